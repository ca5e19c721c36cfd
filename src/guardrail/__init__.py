"""
Guardrail - Policy evaluation engine and admission gateway.

Guardrail evaluates structured requests against declarative rule modules
and uses the verdict to gate resource mutations.
It provides:
- A policy loader that builds immutable, atomically swappable snapshots
- A rule evaluator aggregating blocking (deny) and advisory (warn) findings
- A Kubernetes AdmissionReview webhook that fails closed

Example usage:
    $ guardrail serve --policy-dir policies/kubernetes
    $ guardrail eval input.json --policy-dir policies --package gcp.iam
    $ guardrail check --policy-dir policies
"""

__version__ = "0.1.0"
__author__ = "Guardrail Contributors"

__all__ = [
    "__version__",
    "__author__",
]
