"""
JSON report generator for Guardrail.

Builds structured output for evaluation results, used by the
`guardrail eval --json` command and the /evaluate endpoint.

Design Principles:
    - Deterministic: findings are listed in lexical message order
    - Complete: every package appears, including failed and unresolved ones
    - Human-readable keys: descriptive snake_case names
"""

import json
from typing import Any

from guardrail.policy.evaluator import BatchEntry
from guardrail.schema import EvaluationResult, Finding


def build_result_report(result: EvaluationResult) -> dict[str, Any]:
    """Build a report dictionary for one package result."""
    return {
        "package": result.package,
        "resolved": result.resolved,
        "violations": [_finding_dict(f) for f in result.sorted_violations()],
        "warnings": [_finding_dict(f) for f in result.sorted_warnings()],
        "fail_count": result.fail_count,
        "warn_count": result.warn_count,
    }


def build_batch_report(entries: list[BatchEntry]) -> dict[str, Any]:
    """
    Build a report dictionary for a batch evaluation.

    Returns:
        Dictionary with per-package results and totals
    """
    results = []
    for entry in entries:
        if entry.error is not None:
            results.append({
                "package": entry.package,
                "error": entry.error.to_dict(),
            })
        else:
            results.append(build_result_report(entry.result))

    return {
        "results": results,
        "summary": {
            "packages": len(entries),
            "fail_count": sum(e.result.fail_count for e in entries if e.result is not None),
            "warn_count": sum(e.result.warn_count for e in entries if e.result is not None),
            "errors": sum(1 for e in entries if e.error is not None),
        },
    }


def generate_json_report(entries: list[BatchEntry], indent: int = 2) -> str:
    """Serialize a batch report to JSON text."""
    return json.dumps(build_batch_report(entries), indent=indent)


def _finding_dict(finding: Finding) -> dict[str, str]:
    return {
        "message": finding.message,
        "severity": finding.severity.value,
        "policy": finding.policy,
    }
