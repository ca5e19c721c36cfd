"""
Rule evaluator for Guardrail.

Runs a package's "deny" and "warn" rule collections against an input
document and aggregates the produced messages into an EvaluationResult.

Design Principles:
    - Pure: the result depends only on (snapshot, package, input)
    - Unresolved is not an error: a package with no modules yields an
      empty result flagged resolved=False, so callers can tell
      "nothing matched" from "no policy exists" and apply their own default
    - No decisions: runtime failures surface as EvaluationError; whether
      that allows or denies anything is the caller's call
    - No pass count: "total applicable rules" is ill-defined for a
      multi-valued rule language
"""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from guardrail.errors import EvaluationError
from guardrail.policy.loader import Snapshot
from guardrail.schema import EvaluationResult, Finding

logger = logging.getLogger(__name__)

DENY_COLLECTION = "deny"
WARN_COLLECTION = "warn"


def evaluate(
    snapshot: Snapshot,
    package: str,
    input: Mapping[str, Any],
) -> EvaluationResult:
    """
    Evaluate one package against an input document.

    Args:
        snapshot: The policy snapshot to read (never modified)
        package: Dotted package path, e.g. "kubernetes.admission.pod"
        input: Input document handed to the rules

    Returns:
        EvaluationResult with deduplicated violations and warnings

    Raises:
        EvaluationError: If the backend fails while evaluating rules
    """
    if not snapshot.has_package(package):
        logger.debug("No policy package %s", package)
        return EvaluationResult.unresolved(package)

    violations = frozenset(
        Finding.violation(message, package)
        for message in _collect(snapshot, package, DENY_COLLECTION, input)
    )
    warnings = frozenset(
        Finding.warning(message, package)
        for message in _collect(snapshot, package, WARN_COLLECTION, input)
    )

    return EvaluationResult(
        package=package,
        resolved=True,
        violations=violations,
        warnings=warnings,
    )


def _collect(
    snapshot: Snapshot,
    package: str,
    collection: str,
    input: Mapping[str, Any],
) -> set[str]:
    try:
        values = snapshot.backend.evaluate(
            f"{package}.{collection}",
            snapshot.modules,
            input,
            snapshot.data,
        )
    except EvaluationError:
        raise
    except Exception as e:
        raise EvaluationError(package=package, underlying_error=str(e)) from e

    return {_to_message(v) for v in values}


def _to_message(value: Any) -> str:
    """Render a rule value as message text."""
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping) and isinstance(value.get("msg"), str):
        return value["msg"]
    return json.dumps(value, sort_keys=True)


# =============================================================================
# Batch Evaluation
# =============================================================================


@dataclass(frozen=True)
class BatchEntry:
    """
    Outcome of evaluating one package in a batch.

    Exactly one of result/error is set.
    """

    package: str
    result: EvaluationResult | None = None
    error: EvaluationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def evaluate_all(snapshot: Snapshot, input: Mapping[str, Any]) -> list[BatchEntry]:
    """
    Evaluate the input against every package in the snapshot.

    A failing package is recorded in its entry and does not stop the
    remaining packages.

    Returns:
        One entry per package, sorted by package path
    """
    entries = []
    for package in snapshot.packages:
        try:
            entries.append(BatchEntry(package=package, result=evaluate(snapshot, package, input)))
        except EvaluationError as e:
            logger.warning("Evaluation of %s failed: %s", package, e.underlying_error)
            entries.append(BatchEntry(package=package, error=e))
    return entries
