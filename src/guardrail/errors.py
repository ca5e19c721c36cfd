"""
Exception hierarchy for Guardrail.

All Guardrail exceptions inherit from GuardrailError, allowing callers to catch
all Guardrail-specific exceptions with a single except clause.

Exception Categories:
    - PolicyLoadError: A rule file or policy root could not be loaded
    - EvaluationError: Rules failed at runtime against one input
    - MalformedRequestError: An inbound admission request was unusable
    - ConfigError: Process configuration is invalid

An unresolved package (no rules for a request kind) is deliberately not
an error; see EvaluationResult.resolved.

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (file, package, uid where applicable)
    - Errors are both human-readable and machine-parseable
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Policy load errors: 1xxx
ERROR_POLICY_LOAD = 1001
ERROR_POLICY_PARSE = 1002
ERROR_POLICY_ROOT_NOT_FOUND = 1003
ERROR_POLICY_DATA = 1004

# Evaluation errors: 2xxx
ERROR_EVALUATION_FAILED = 2001
ERROR_EVALUATION_TIMEOUT = 2002

# Request errors: 3xxx
ERROR_REQUEST_DECODE = 3001
ERROR_REQUEST_MEDIA_TYPE = 3002

# Configuration errors: 4xxx
ERROR_CONFIG_INVALID = 4001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class GuardrailError(Exception):
    """
    Base exception for all Guardrail errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Policy Load Errors
# =============================================================================


@dataclass
class PolicyLoadError(GuardrailError):
    """
    Raised when the policy set cannot be loaded.

    Any failure aborts the whole load: a partial rule set is never served.

    Attributes:
        source: The file or directory that failed
        line: Line number of the failure, when the backend reports one
        underlying_error: Original error text
    """

    source: str = ""
    line: int | None = None
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            location = f"{self.source}:{self.line}" if self.line else self.source
            self.message = f"Failed to load policy {location}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_POLICY_LOAD
        self.context.update({
            "source": self.source,
            "line": self.line,
            "underlying_error": self.underlying_error,
        })


@dataclass
class PolicyParseError(PolicyLoadError):
    """Raised when a single rule file has a syntax error."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if self.code == 0:
            self.code = ERROR_POLICY_PARSE
        if not self.suggestion:
            self.suggestion = "Fix the syntax error; no policies are served until every file parses"
        super().__post_init__()


@dataclass
class PolicyRootNotFoundError(PolicyLoadError):
    """Raised when a configured policy directory does not exist."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy directory not found: {self.source}"
        if self.code == 0:
            self.code = ERROR_POLICY_ROOT_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Check POLICY_DIRS or --policy-dir"
        super().__post_init__()


@dataclass
class PolicyDataError(PolicyLoadError):
    """Raised when the auxiliary data document cannot be loaded."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid policy data file {self.source}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_POLICY_DATA
        super().__post_init__()


# =============================================================================
# Evaluation Errors
# =============================================================================


@dataclass
class EvaluationError(GuardrailError):
    """
    Raised when rules fail at runtime against one input.

    The evaluator never turns this into an allow/deny decision; callers
    on the gating path must fail closed.

    Attributes:
        package: Package path being evaluated
        underlying_error: Original error text
    """

    package: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Evaluation of {self.package} failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_EVALUATION_FAILED
        self.context.update({
            "package": self.package,
            "underlying_error": self.underlying_error,
        })


@dataclass
class EvaluationTimeoutError(EvaluationError):
    """Raised when evaluation exceeds the per-request deadline."""

    timeout_seconds: float = 0.0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Evaluation of {self.package} timed out after {self.timeout_seconds}s"
        if self.code == 0:
            self.code = ERROR_EVALUATION_TIMEOUT
        if not self.suggestion:
            self.suggestion = "Increase GUARDRAIL_REQUEST_TIMEOUT or simplify the policy"
        super().__post_init__()
        self.context["timeout_seconds"] = self.timeout_seconds


# =============================================================================
# Request Errors
# =============================================================================


@dataclass
class MalformedRequestError(GuardrailError):
    """
    Raised when an inbound admission request cannot be decoded.

    Attributes:
        reason: What was wrong with the request
        status_code: HTTP status to answer with
        uid: Request UID if it could be read from the body
    """

    reason: str = ""
    status_code: int = 400
    uid: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid AdmissionReview request: {self.reason}"
        if self.code == 0:
            self.code = ERROR_REQUEST_DECODE
        self.context.update({
            "reason": self.reason,
            "status_code": self.status_code,
            "uid": self.uid,
        })


@dataclass
class UnsupportedMediaTypeError(MalformedRequestError):
    """Raised when the request content type is not JSON."""

    content_type: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid Content-Type {self.content_type!r}, expected application/json"
        if self.code == 0:
            self.code = ERROR_REQUEST_MEDIA_TYPE
        self.status_code = 415
        super().__post_init__()
        self.context["content_type"] = self.content_type


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigError(GuardrailError):
    """
    Raised when process configuration is invalid.

    Attributes:
        setting: Name of the offending setting (environment variable or option)
        value: The rejected value
    """

    setting: str = ""
    value: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration for {self.setting}: {self.value!r}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context.update({
            "setting": self.setting,
            "value": self.value,
        })
