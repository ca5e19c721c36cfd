"""
Policy module for Guardrail.

This module implements policy loading and evaluation:
    - RuleBackend: Pluggable rule language seam (Rego via regorus by default)
    - Snapshot / PolicyStore: Immutable loaded policy set, swapped on reload
    - evaluate / evaluate_all: deny/warn aggregation for one or all packages

The evaluator is a pure function of (snapshot, package, input). It never
decides allow/deny; the gateway does, and fails closed.
"""

from guardrail.policy.backend import PolicyModule, RuleBackend
from guardrail.policy.evaluator import BatchEntry, evaluate, evaluate_all
from guardrail.policy.loader import PolicyStore, Snapshot, load_snapshot

__all__ = [
    "BatchEntry",
    "PolicyModule",
    "PolicyStore",
    "RuleBackend",
    "Snapshot",
    "evaluate",
    "evaluate_all",
    "load_snapshot",
]
