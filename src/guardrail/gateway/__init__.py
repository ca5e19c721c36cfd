"""
Admission gateway for Guardrail.

A Kubernetes validating-webhook implementation:
    - AdmissionController: routing, input building and the fail-closed decision table
    - create_app: FastAPI application exposing /validate and /health
"""

from guardrail.gateway.admission import AdmissionController, build_input, decode_review, route_package
from guardrail.gateway.app import create_app

__all__ = [
    "AdmissionController",
    "build_input",
    "create_app",
    "decode_review",
    "route_package",
]
