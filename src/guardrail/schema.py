"""
Schema definitions for Guardrail.

This module defines the Pydantic models used throughout Guardrail:
- Finding/EvaluationResult: The verdict of evaluating one package
- AdmissionReview/AdmissionRequest/AdmissionResponse: The webhook wire protocol
- RawObject: An undecoded resource payload, parsed only on demand

Design Decisions:
    - Verdict models are immutable (frozen=True) and hashable
    - Findings have set semantics; ordering is a display concern
    - Wire models ignore unknown fields so newer control planes still decode
    - Wire field names follow the protocol (camelCase aliases)
"""

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_REVIEW_KIND = "AdmissionReview"


# =============================================================================
# Enums
# =============================================================================


class Severity(str, Enum):
    """Severity tag of a finding."""

    ERROR = "ERROR"
    WARNING = "WARNING"


class Operation(str, Enum):
    """Admission operations a control plane may ask about."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


# =============================================================================
# Evaluation Models
# =============================================================================


class Finding(BaseModel):
    """
    A single structured finding produced by a rule.

    Findings are frozen and hashable so they collapse in sets when the
    rule language produces the same message via several derivations.

    Attributes:
        message: Human-readable description
        severity: ERROR for deny rules, WARNING for warn rules
        policy: Package path the finding came from
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    message: str = Field(..., description="Human-readable finding")
    severity: Severity = Field(..., description="ERROR (deny) or WARNING (warn)")
    policy: str = Field(..., description="Originating package path")

    @classmethod
    def violation(cls, message: str, policy: str) -> "Finding":
        """Create a blocking finding."""
        return cls(message=message, severity=Severity.ERROR, policy=policy)

    @classmethod
    def warning(cls, message: str, policy: str) -> "Finding":
        """Create an advisory finding."""
        return cls(message=message, severity=Severity.WARNING, policy=policy)


class EvaluationResult(BaseModel):
    """
    The verdict of evaluating one package against one input.

    A result for a package with no contributing modules has
    resolved=False and no findings; callers decide what that means.

    Attributes:
        package: Package path that was evaluated
        resolved: Whether any module contributes to the package
        violations: Findings from deny rules
        warnings: Findings from warn rules
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    package: str = Field(..., description="Evaluated package path")
    resolved: bool = Field(..., description="Whether the package exists in the snapshot")
    violations: frozenset[Finding] = Field(default_factory=frozenset)
    warnings: frozenset[Finding] = Field(default_factory=frozenset)

    @property
    def fail_count(self) -> int:
        return len(self.violations)

    @property
    def warn_count(self) -> int:
        return len(self.warnings)

    @property
    def passed(self) -> bool:
        """True when no deny rule matched."""
        return not self.violations

    @classmethod
    def unresolved(cls, package: str) -> "EvaluationResult":
        """Create the result for a package nothing contributes to."""
        return cls(package=package, resolved=False)

    def sorted_violations(self) -> list[Finding]:
        """Violations in lexical message order."""
        return sorted(self.violations, key=lambda f: f.message)

    def sorted_warnings(self) -> list[Finding]:
        """Warnings in lexical message order."""
        return sorted(self.warnings, key=lambda f: f.message)


# =============================================================================
# Admission Wire Models
# =============================================================================


class RawObject(BaseModel):
    """
    An undecoded resource payload from an admission request.

    The gateway never interprets payloads; rules do, on demand.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    raw: bytes = Field(..., description="JSON encoding of the resource")

    @classmethod
    def from_value(cls, value: Any) -> "RawObject":
        """Capture a decoded JSON value back as compact bytes."""
        return cls(raw=json.dumps(value, separators=(",", ":")).encode("utf-8"))

    @property
    def text(self) -> str:
        return self.raw.decode("utf-8")

    def parsed(self) -> Any:
        """Decode the payload."""
        return json.loads(self.raw)


class GroupVersionKind(BaseModel):
    """Fully qualified kind of the resource under review."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    group: str = ""
    version: str = ""
    kind: str = Field(..., min_length=1)


class AdmissionRequest(BaseModel):
    """
    The request half of an AdmissionReview.

    Attributes:
        uid: Opaque identifier echoed verbatim in the response
        kind: Group/version/kind of the resource
        name: Resource name (may be empty on CREATE with generateName)
        namespace: Resource namespace (empty for cluster-scoped resources)
        operation: CREATE, UPDATE, DELETE or CONNECT
        object: New resource state, undecoded
        old_object: Previous resource state, undecoded
        options: Operation options supplied by the caller
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    uid: str = Field(..., min_length=1)
    kind: GroupVersionKind
    name: str = ""
    namespace: str = ""
    operation: Operation
    object: RawObject | None = None
    old_object: RawObject | None = Field(default=None, alias="oldObject")
    options: dict[str, Any] | None = None
    dry_run: bool | None = Field(default=None, alias="dryRun")

    @field_validator("object", "old_object", mode="before")
    @classmethod
    def capture_raw(cls, v: Any) -> Any:
        """Keep payloads as raw bytes rather than committing to a schema."""
        if v is None or isinstance(v, RawObject):
            return v
        return RawObject.from_value(v)


class AdmissionStatus(BaseModel):
    """Status attached to a response explaining a rejection."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    message: str
    code: int | None = None


class AdmissionResponse(BaseModel):
    """
    The response half of an AdmissionReview.

    The admission decision lives in `allowed`, never in the HTTP status.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    uid: str
    allowed: bool
    status: AdmissionStatus | None = None
    warnings: list[str] | None = None

    @classmethod
    def allow(cls, uid: str, warnings: list[str] | None = None) -> "AdmissionResponse":
        """Create an allowed response."""
        return cls(uid=uid, allowed=True, warnings=warnings or None)

    @classmethod
    def deny(
        cls,
        uid: str,
        message: str,
        code: int = 403,
        warnings: list[str] | None = None,
    ) -> "AdmissionResponse":
        """Create a rejected response."""
        return cls(
            uid=uid,
            allowed=False,
            status=AdmissionStatus(message=message, code=code),
            warnings=warnings or None,
        )


class AdmissionReview(BaseModel):
    """The AdmissionReview envelope for both directions of the exchange."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    api_version: str = Field(default=ADMISSION_API_VERSION, alias="apiVersion")
    kind: Literal["AdmissionReview"] = ADMISSION_REVIEW_KIND
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    def to_wire(self) -> dict[str, Any]:
        """Serialize with protocol field names, omitting absent fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
