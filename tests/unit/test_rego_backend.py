"""
Tests for the Rego backend and the bundled policies.

These run the real regorus engine against the policies shipped under
policies/.
"""

import json

import pytest

from guardrail.errors import EvaluationError, PolicyParseError
from guardrail.policy.backend import RuleBackend
from guardrail.policy.evaluator import evaluate
from guardrail.policy.loader import load_snapshot
from guardrail.policy.rego import RegoBackend, _query_values

POD_PACKAGE = "kubernetes.admission.pod"


@pytest.fixture
def backend():
    return RegoBackend()


@pytest.fixture
def policies(policies_dir, backend):
    return load_snapshot([policies_dir], backend=backend)


class TestParse:
    """Tests for RegoBackend.parse()."""

    def test_satisfies_protocol(self, backend):
        assert isinstance(backend, RuleBackend)

    def test_reads_package(self, backend):
        module = backend.parse("x.rego", "package acme.rules\n\nimport rego.v1\n\ndeny contains \"no\" if false\n")
        assert module.package == "acme.rules"
        assert module.source == "x.rego"

    def test_syntax_error(self, backend):
        with pytest.raises(PolicyParseError) as exc_info:
            backend.parse("broken.rego", "package acme\n\ndeny contains msg if {\n")
        assert exc_info.value.source == "broken.rego"

    def test_missing_package(self, backend):
        with pytest.raises(PolicyParseError):
            backend.parse("empty.rego", "import rego.v1\n")


class TestEvaluate:
    """Tests for RegoBackend.evaluate()."""

    RULES = "\n".join([
        "package acme",
        "",
        "import rego.v1",
        "",
        "deny contains msg if {",
        "\tinput.size > data.limits.size",
        "\tmsg := sprintf(\"size %d exceeds %d\", [input.size, data.limits.size])",
        "}",
        "",
    ])

    def test_values(self, backend):
        module = backend.parse("acme.rego", self.RULES)
        values = backend.evaluate("acme.deny", [module], {"size": 10}, {"limits": {"size": 5}})
        assert values == ["size 10 exceeds 5"]

    def test_empty_when_nothing_matches(self, backend):
        module = backend.parse("acme.rego", self.RULES)
        assert backend.evaluate("acme.deny", [module], {"size": 1}, {"limits": {"size": 5}}) == []

    def test_undefined_collection_is_empty(self, backend):
        module = backend.parse("acme.rego", self.RULES)
        assert backend.evaluate("acme.warn", [module], {"size": 1}) == []


class TestQueryValues:
    def test_no_results(self):
        assert _query_values({"result": []}) == []
        assert _query_values({}) == []

    def test_set_value(self):
        payload = {"result": [{"expressions": [{"value": ["a", "b"], "text": "data.x.deny"}]}]}
        assert _query_values(payload) == ["a", "b"]

    def test_object_value(self):
        payload = {"result": [{"expressions": [{"value": {"k1": "a"}}]}]}
        assert _query_values(payload) == ["a"]

    def test_scalar_value(self):
        payload = {"result": [{"expressions": [{"value": "only"}]}]}
        assert _query_values(payload) == ["only"]


class TestKubernetesPodPolicies:
    """The bundled pod policies against admission-shaped inputs."""

    def test_privileged_container_denied(self, policies, privileged_pod, pod_input):
        result = evaluate(policies, POD_PACKAGE, pod_input(privileged_pod))
        assert [f.message for f in result.sorted_violations()] == [
            "Privileged container 'sidecar' is not allowed",
        ]

    def test_compliant_pod_passes(self, policies, compliant_pod, pod_input):
        result = evaluate(policies, POD_PACKAGE, pod_input(compliant_pod))
        assert result.resolved
        assert result.violations == frozenset()
        assert result.warnings == frozenset()

    def test_warn_only(self, policies, make_pod, make_container, pod_input):
        pod = make_pod(containers=[make_container(readinessProbe=None)], namespace="default")
        result = evaluate(policies, POD_PACKAGE, pod_input(pod))

        assert result.passed
        assert [f.message for f in result.sorted_warnings()] == [
            "Container 'app' has no readiness probe",
            "Pod 'web' is deployed in the default namespace",
        ]

    def test_host_namespaces_and_limits(self, policies, make_pod, make_container, pod_input):
        pod = make_pod(
            containers=[make_container(image="nginx", resources={"limits": {"cpu": "1"}})],
            hostNetwork=True,
            labels={"app": "web"},
        )
        result = evaluate(policies, POD_PACKAGE, pod_input(pod))

        assert [f.message for f in result.sorted_violations()] == [
            "Container 'app' image has no tag and defaults to ':latest'",
            "Container 'app' must set a memory limit",
            "Pod 'web' is missing required label 'team'",
            "Pod 'web' must not set hostNetwork",
        ]

    def test_generate_name_pod_still_checked(self, policies, make_pod):
        """A pod without metadata.name is checked under its generateName prefix."""
        pod = make_pod(labels={}, hostPID=True)
        del pod["metadata"]["name"]
        pod["metadata"]["generateName"] = "web-"
        doc = {
            "kind": "Pod",
            "name": "",
            "namespace": "shop",
            "operation": "CREATE",
            "object": json.dumps(pod),
            "oldObject": None,
            "options": None,
            "dryRun": False,
        }

        result = evaluate(policies, POD_PACKAGE, doc)

        assert [f.message for f in result.sorted_violations()] == [
            "Pod 'web-' is missing required label 'app'",
            "Pod 'web-' is missing required label 'team'",
            "Pod 'web-' must not set hostPID",
        ]

    def test_latest_tag(self, policies, make_pod, make_container, pod_input):
        pod = make_pod(containers=[make_container(image="nginx:latest")])
        result = evaluate(policies, POD_PACKAGE, pod_input(pod))
        assert [f.message for f in result.violations] == ["Container 'app' uses the ':latest' image tag"]

    def test_delete_without_object(self, policies):
        doc = {"kind": "Pod", "name": "web", "namespace": "shop", "operation": "DELETE", "object": None}
        result = evaluate(policies, POD_PACKAGE, doc)
        assert result.passed
        assert result.warnings == frozenset()


class TestGcpIamPolicies:
    def test_owner_granted_to_user(self, policies):
        doc = {"bindings": [{"role": "roles/owner", "members": ["user:alice@example.com"]}]}
        result = evaluate(policies, "gcp.iam", doc)
        assert [f.message for f in result.violations] == [
            "Role 'roles/owner' must not be granted directly to 'user:alice@example.com'",
        ]

    def test_public_member(self, policies):
        doc = {"bindings": [{"role": "roles/storage.objectViewer", "members": ["allUsers"]}]}
        result = evaluate(policies, "gcp.iam", doc)
        assert [f.message for f in result.violations] == [
            "Role 'roles/storage.objectViewer' must not be granted to 'allUsers'",
        ]

    def test_editor_warns(self, policies):
        doc = {"bindings": [{"role": "roles/editor", "members": ["group:devs@example.com"]}]}
        result = evaluate(policies, "gcp.iam", doc)
        assert result.passed
        assert result.warn_count == 1


class TestTerraformStoragePolicies:
    def test_insecure_bucket(self, policies):
        doc = {
            "resource": {
                "type": "google_storage_bucket",
                "name": "logs",
                "attributes": {"uniform_bucket_level_access": False, "public_access_prevention": "inherited"},
            }
        }
        result = evaluate(policies, "terraform.gcp.storage", doc)
        assert [f.message for f in result.sorted_violations()] == [
            "Bucket 'logs' must enable uniform bucket-level access",
            "Bucket 'logs' must enforce public access prevention",
        ]
        assert result.warn_count == 1

    def test_other_resource_ignored(self, policies):
        doc = {"resource": {"type": "google_compute_instance", "name": "vm", "attributes": {}}}
        result = evaluate(policies, "terraform.gcp.storage", doc)
        assert result.passed
        assert result.warn_count == 0


class TestRuntimeError:
    def test_engine_error_surfaces_as_evaluation_error(self, backend, monkeypatch):
        module = backend.parse("acme.rego", TestEvaluate.RULES)

        class FailingEngine:
            def add_policy(self, path, text):
                return "data.acme"

            def set_input_json(self, text):
                pass

            def eval_query_as_json(self, query):
                raise RuntimeError("stack overflow")

        monkeypatch.setattr("guardrail.policy.rego.regorus.Engine", FailingEngine)

        with pytest.raises(EvaluationError) as exc_info:
            backend.evaluate("acme.deny", [module], {"size": 1})
        assert exc_info.value.package == "acme"
        assert exc_info.value.underlying_error == "stack overflow"
