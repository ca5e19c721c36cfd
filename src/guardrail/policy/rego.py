"""
Rego rule backend, evaluated by regorus.

regorus engines cannot move between threads, so nothing engine-shaped
is kept in a snapshot: parse() validates a module with a throwaway
engine and evaluate() builds a fresh engine from source text on every
call. That keeps evaluation a pure function of its arguments.

Rule collections are queried the way the rego library does it
("data.<package>.deny"); an undefined collection is an empty result,
not an error.
"""

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

import regorus

from guardrail.errors import EvaluationError, PolicyParseError
from guardrail.policy.backend import PolicyModule


# regorus reports parse errors as "<path>:<line>:<col>: error: ..."
_LOCATION_RE = re.compile(r":(\d+):(\d+):")


class RegoBackend:
    """
    RuleBackend for Rego policy files.

    Usage:
        backend = RegoBackend()
        module = backend.parse("pod.rego", text)
        messages = backend.evaluate("kubernetes.admission.pod.deny", [module], doc)
    """

    file_suffix = ".rego"

    def parse(self, source: str, text: str) -> PolicyModule:
        """Parse a Rego module and read its declared package."""
        engine = regorus.Engine()
        try:
            package = engine.add_policy(source, text)
        except Exception as e:
            raise PolicyParseError(
                source=source,
                line=_error_line(str(e)),
                underlying_error=str(e).strip(),
            ) from e

        return PolicyModule(source=source, package=_strip_data_prefix(package), text=text)

    def evaluate(
        self,
        rule: str,
        modules: Sequence[PolicyModule],
        input: Mapping[str, Any],
        data: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        """Query data.<rule> and return the produced values."""
        package = rule.rsplit(".", 1)[0]
        engine = regorus.Engine()
        try:
            for module in modules:
                engine.add_policy(module.source, module.text)
            if data:
                engine.add_data_json(json.dumps(dict(data)))
            engine.set_input_json(json.dumps(dict(input)))
            raw = engine.eval_query_as_json(f"data.{rule}")
        except Exception as e:
            raise EvaluationError(
                package=package,
                underlying_error=str(e).strip(),
            ) from e

        return _query_values(json.loads(raw))


def _strip_data_prefix(package: str) -> str:
    if package.startswith("data."):
        return package[len("data."):]
    return package


def _error_line(text: str) -> int | None:
    match = _LOCATION_RE.search(text)
    return int(match.group(1)) if match else None


def _query_values(payload: Mapping[str, Any]) -> list[Any]:
    """
    Extract the first expression value from a query result.

    Sets serialize as JSON arrays. An undefined query has no results.
    """
    results = payload.get("result") or []
    if not results:
        return []

    expressions = results[0].get("expressions") or []
    if not expressions:
        return []

    value = expressions[0].get("value")
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, Mapping):
        # Object-valued collections (deny[key] := msg) contribute their values
        return list(value.values())
    return [value]
