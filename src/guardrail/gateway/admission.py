"""
Admission review handling.

Turns AdmissionReview requests into evaluation inputs and evaluation
outcomes into AdmissionReview responses. Everything here is synchronous
and transport-free; the HTTP layer (gateway.app) adds content-type
checks, deadlines and disconnect handling around it.

Decision table:
    evaluation error          -> not allowed (fail closed)
    deadline exceeded         -> not allowed (fail closed)
    package unresolved        -> configured UnresolvedPolicy, made visible
    violations                -> not allowed, sorted messages joined by "; "
    no violations             -> allowed, warnings attached
"""

import json
import logging
from typing import Any

from pydantic import ValidationError

from guardrail.config import GatewayConfig, UnresolvedPolicy
from guardrail.errors import EvaluationError, EvaluationTimeoutError, MalformedRequestError
from guardrail.policy.evaluator import evaluate
from guardrail.policy.loader import Snapshot
from guardrail.schema import (
    AdmissionRequest,
    AdmissionResponse,
    AdmissionReview,
    EvaluationResult,
)

logger = logging.getLogger(__name__)

MESSAGE_DELIMITER = "; "


def route_package(kind: str, prefix: str) -> str:
    """Package path for a resource kind: <prefix>.<lower-cased kind>."""
    return f"{prefix}.{kind.lower()}"


def build_input(request: AdmissionRequest) -> dict[str, Any]:
    """
    Assemble the evaluation input for an admission request.

    Payloads are passed through as raw JSON text; rules decode them
    if and when they need to.
    """
    return {
        "kind": request.kind.kind,
        "name": request.name,
        "namespace": request.namespace,
        "operation": request.operation.value,
        "object": request.object.text if request.object is not None else None,
        "oldObject": request.old_object.text if request.old_object is not None else None,
        "options": request.options,
        "dryRun": bool(request.dry_run),
    }


def decode_review(body: bytes) -> AdmissionReview:
    """
    Decode an AdmissionReview request body.

    Raises:
        MalformedRequestError: If the body is not a usable AdmissionReview;
            carries the request UID when one could be read
    """
    try:
        review = AdmissionReview.model_validate_json(body)
    except ValidationError as e:
        reason = e.errors()[0].get("msg", "invalid body") if e.errors() else "invalid body"
        raise MalformedRequestError(reason=reason, uid=_peek_uid(body)) from e

    if review.request is None:
        raise MalformedRequestError(reason="missing request")
    return review


def _peek_uid(body: bytes) -> str | None:
    """Best-effort UID extraction from a body that failed validation."""
    try:
        uid = json.loads(body)["request"]["uid"]
    except (ValueError, TypeError, KeyError):
        return None
    return uid if isinstance(uid, str) else None


class AdmissionController:
    """
    Evaluates admission requests against the current snapshot.

    Stateless per request: the only persistent state is the config.

    Usage:
        controller = AdmissionController(config)
        result = controller.evaluate_request(snapshot, review.request)
        response = controller.decide(review.request.uid, package, result)
    """

    def __init__(self, config: GatewayConfig) -> None:
        self.config = config

    def route(self, request: AdmissionRequest) -> str:
        return route_package(request.kind.kind, self.config.package_prefix)

    def evaluate_request(self, snapshot: Snapshot, request: AdmissionRequest) -> EvaluationResult:
        """
        Evaluate a request against the snapshot.

        Raises:
            EvaluationError: If rule evaluation fails
        """
        return evaluate(snapshot, self.route(request), build_input(request))

    def decide(self, uid: str, result: EvaluationResult) -> AdmissionResponse:
        """Convert an evaluation result into a correlated response."""
        warnings = [w.message for w in result.sorted_warnings()]

        if not result.resolved:
            note = f"No policy package {result.package}"
            if self.config.unresolved_policy == UnresolvedPolicy.DENY:
                return AdmissionResponse.deny(uid, f"{note}; denied by default")
            return AdmissionResponse.allow(uid, warnings=[f"{note}; allowed by default"])

        if result.violations:
            message = MESSAGE_DELIMITER.join(v.message for v in result.sorted_violations())
            return AdmissionResponse.deny(uid, message, warnings=warnings)

        return AdmissionResponse.allow(uid, warnings=warnings)

    def fail_closed(self, uid: str, error: EvaluationError) -> AdmissionResponse:
        """Response for an evaluation that did not complete."""
        if isinstance(error, EvaluationTimeoutError):
            message = f"Policy evaluation timed out after {error.timeout_seconds}s"
            return AdmissionResponse.deny(uid, message, code=504)
        return AdmissionResponse.deny(uid, f"Error evaluating request: {error.message}", code=500)

    def review(self, snapshot: Snapshot, review: AdmissionReview) -> AdmissionReview:
        """
        Evaluate a decoded review and build the response envelope synchronously.

        Evaluation errors are converted to a not-allowed response.
        """
        request = review.request
        try:
            result = self.evaluate_request(snapshot, request)
        except EvaluationError as e:
            logger.error("Error evaluating request %s: %s", request.uid, e.message)
            response = self.fail_closed(request.uid, e)
        else:
            response = self.decide(request.uid, result)

        return self.envelope(review, response)

    @staticmethod
    def envelope(review: AdmissionReview, response: AdmissionResponse) -> AdmissionReview:
        """Wrap a response in an envelope echoing the request apiVersion."""
        return AdmissionReview(api_version=review.api_version, response=response)
