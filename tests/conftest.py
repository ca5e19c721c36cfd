"""
Pytest configuration and fixtures for Guardrail tests.

This module provides shared fixtures used across unit and integration tests:
- A line-oriented fake rule backend for loader, evaluator and gateway tests
- Paths to the bundled Rego policies
- Builders for pods and AdmissionReview bodies
"""

import json
import re
import tempfile
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any, Generator

import pytest

from guardrail.errors import EvaluationError, PolicyParseError
from guardrail.policy.backend import PolicyModule

REPO_ROOT = Path(__file__).resolve().parent.parent
POLICIES_DIR = REPO_ROOT / "policies"

_DIRECTIVE_RE = re.compile(r"^(package|deny|warn|deny-if|warn-if|deny-data|fail|sleep)(?: (\S+))?: (.*)$")


class FakeBackend:
    """
    Minimal line-oriented rule language for tests (files end in .pol).

        package: example.pkg
        deny: unconditional message
        warn: unconditional warning
        deny-if flag: message when input["flag"] is truthy
        warn-if flag: warning when input["flag"] is truthy
        deny-data key: message when data["key"] is truthy
        fail: error raised whenever the package is evaluated
        sleep: seconds to block before evaluating
    """

    file_suffix = ".pol"

    def __init__(self) -> None:
        self.calls: list[str] = []

    def parse(self, source: str, text: str) -> PolicyModule:
        package = None
        for lineno, directive, _, value in self._directives(source, text):
            if directive == "package":
                package = value
            elif package is None:
                raise PolicyParseError(source=source, line=lineno, underlying_error="package expected")
        if package is None:
            raise PolicyParseError(source=source, line=1, underlying_error="empty module")
        return PolicyModule(source=source, package=package, text=text)

    def evaluate(
        self,
        rule: str,
        modules: Sequence[PolicyModule],
        input: Mapping[str, Any],
        data: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        self.calls.append(rule)
        package, collection = rule.rsplit(".", 1)
        data = data or {}
        values = []
        for module in modules:
            if module.package != package:
                continue
            for _, directive, key, value in self._directives(module.source, module.text):
                if directive == "fail":
                    raise EvaluationError(package=package, underlying_error=value)
                if directive == "sleep":
                    time.sleep(float(value))
                elif directive == collection:
                    values.append(value)
                elif directive == f"{collection}-if" and input.get(key):
                    values.append(value)
                elif directive == f"{collection}-data" and data.get(key):
                    values.append(value)
        return values

    @staticmethod
    def _directives(source: str, text: str):
        for lineno, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            match = _DIRECTIVE_RE.match(line)
            if match is None:
                raise PolicyParseError(source=source, line=lineno, underlying_error=f"bad line: {line}")
            yield lineno, match.group(1), match.group(2), match.group(3)


# =============================================================================
# Filesystem Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Return a fresh fake rule backend."""
    return FakeBackend()


@pytest.fixture
def write_policy(temp_dir: Path) -> Callable[[str, str], Path]:
    """Return a helper that writes a policy file under temp_dir."""

    def _write(relative: str, content: str) -> Path:
        path = temp_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return _write


@pytest.fixture
def policies_dir() -> Path:
    """Root of the bundled Rego policies."""
    return POLICIES_DIR


@pytest.fixture
def kubernetes_policies_dir() -> Path:
    """Bundled Kubernetes admission policies."""
    return POLICIES_DIR / "kubernetes"


# =============================================================================
# Resource Builders
# =============================================================================


def _container(name: str = "app", image: str = "nginx:1.25.3", **overrides: Any) -> dict[str, Any]:
    """A container that satisfies every bundled pod rule; None overrides drop a field."""
    container = {
        "name": name,
        "image": image,
        "resources": {"limits": {"cpu": "500m", "memory": "256Mi"}},
        "readinessProbe": {"httpGet": {"path": "/healthz", "port": 8080}},
        "securityContext": {"runAsNonRoot": True},
    }
    container.update(overrides)
    return {k: v for k, v in container.items() if v is not None}


def _pod(
    name: str = "web",
    namespace: str = "shop",
    containers: list[dict[str, Any]] | None = None,
    labels: dict[str, str] | None = None,
    **spec: Any,
) -> dict[str, Any]:
    """A pod that satisfies every bundled pod rule unless overridden."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {"app": "web", "team": "payments"} if labels is None else labels,
        },
        "spec": {
            "containers": containers if containers is not None else [_container()],
            **spec,
        },
    }


def _review(
    obj: dict[str, Any] | None,
    uid: str = "abc-123",
    kind: str = "Pod",
    operation: str = "CREATE",
    old_obj: dict[str, Any] | None = None,
    api_version: str = "admission.k8s.io/v1",
) -> dict[str, Any]:
    """An AdmissionReview request envelope."""
    metadata = (obj or old_obj or {}).get("metadata", {})
    return {
        "apiVersion": api_version,
        "kind": "AdmissionReview",
        "request": {
            "uid": uid,
            "kind": {"group": "", "version": "v1", "kind": kind},
            "resource": {"group": "", "version": "v1", "resource": kind.lower() + "s"},
            "name": metadata.get("name", ""),
            "namespace": metadata.get("namespace", ""),
            "operation": operation,
            "userInfo": {"username": "admin"},
            "object": obj,
            "oldObject": old_obj,
            "options": {"kind": "CreateOptions", "apiVersion": "meta.k8s.io/v1"},
            "dryRun": False,
        },
    }


def _pod_input(pod: dict[str, Any], operation: str = "CREATE") -> dict[str, Any]:
    """Evaluation input for a pod, shaped as the gateway builds it."""
    return {
        "kind": "Pod",
        "name": pod["metadata"]["name"],
        "namespace": pod["metadata"]["namespace"],
        "operation": operation,
        "object": json.dumps(pod),
        "oldObject": None,
        "options": None,
        "dryRun": False,
    }


@pytest.fixture
def make_container() -> Callable[..., dict[str, Any]]:
    return _container


@pytest.fixture
def make_pod() -> Callable[..., dict[str, Any]]:
    return _pod


@pytest.fixture
def make_review() -> Callable[..., dict[str, Any]]:
    return _review


@pytest.fixture
def pod_input() -> Callable[..., dict[str, Any]]:
    return _pod_input


@pytest.fixture
def compliant_pod() -> dict[str, Any]:
    return _pod()


@pytest.fixture
def privileged_pod() -> dict[str, Any]:
    return _pod(
        containers=[
            _container(),
            _container(name="sidecar", image="envoy:1.29.0", securityContext={"privileged": True}),
        ]
    )
