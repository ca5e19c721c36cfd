"""
Process configuration for Guardrail.

One immutable GatewayConfig is built at process start (from the
environment, then overridden by CLI options) and passed explicitly
to the policy store and the gateway. Nothing reads the environment
after that.

Environment variables:
    POLICY_DIRS                  os.pathsep-separated policy roots
    HOST / PORT                  Listen address
    TLS_CERT_FILE / TLS_KEY_FILE Serve TLS when both are set
    GUARDRAIL_PACKAGE_PREFIX     Prefix for routed package paths
    GUARDRAIL_UNRESOLVED_POLICY  "allow" or "deny" when no package matches
    GUARDRAIL_REQUEST_TIMEOUT    Per-request evaluation deadline (seconds)
    GUARDRAIL_DATA_FILE          Auxiliary JSON/YAML data document
    LOG_LEVEL                    Logging level name
"""

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from guardrail.errors import ConfigError


DEFAULT_POLICY_DIRS = ("policies/kubernetes",)
DEFAULT_PACKAGE_PREFIX = "kubernetes.admission"

_ENV_FIELDS = {
    "HOST": "host",
    "PORT": "port",
    "TLS_CERT_FILE": "tls_cert_file",
    "TLS_KEY_FILE": "tls_key_file",
    "GUARDRAIL_PACKAGE_PREFIX": "package_prefix",
    "GUARDRAIL_UNRESOLVED_POLICY": "unresolved_policy",
    "GUARDRAIL_REQUEST_TIMEOUT": "request_timeout_seconds",
    "GUARDRAIL_DATA_FILE": "data_file",
    "LOG_LEVEL": "log_level",
}


class UnresolvedPolicy(str, Enum):
    """
    What the gateway decides when no package exists for a request kind.

    ALLOW matches the historical behaviour of admission controllers that
    only guard the kinds they have rules for. DENY fails closed.
    """

    ALLOW = "allow"
    DENY = "deny"


class GatewayConfig(BaseModel):
    """
    Immutable configuration for the loader and gateway.

    Attributes:
        policy_dirs: Root directories scanned for rule files
        host: Interface to bind
        port: Port to bind
        tls_cert_file: PEM certificate (requires tls_key_file)
        tls_key_file: PEM private key (requires tls_cert_file)
        package_prefix: Namespace prefix for routed packages
        unresolved_policy: Decision when no package matches
        request_timeout_seconds: Per-request evaluation deadline
        data_file: Optional auxiliary data document for rules
        log_level: Logging level name
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy_dirs: tuple[Path, ...] = Field(
        default=tuple(Path(p) for p in DEFAULT_POLICY_DIRS),
        min_length=1,
    )
    host: str = "0.0.0.0"
    port: int = Field(default=8443, gt=0, lt=65536)
    tls_cert_file: Path | None = None
    tls_key_file: Path | None = None
    package_prefix: str = Field(default=DEFAULT_PACKAGE_PREFIX, min_length=1)
    unresolved_policy: UnresolvedPolicy = UnresolvedPolicy.ALLOW
    request_timeout_seconds: float = Field(default=5.0, gt=0, le=300)
    data_file: Path | None = None
    log_level: str = "INFO"

    @field_validator("package_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Prefix must be a dotted identifier path."""
        for part in v.split("."):
            if not part.replace("_", "").isalnum():
                msg = f"Invalid package prefix: {v}"
                raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Invalid log level: {v}"
            raise ValueError(msg)
        return level

    @model_validator(mode="after")
    def validate_tls_pair(self) -> "GatewayConfig":
        """Certificate and key are only meaningful together."""
        if (self.tls_cert_file is None) != (self.tls_key_file is None):
            msg = "TLS_CERT_FILE and TLS_KEY_FILE must be set together"
            raise ValueError(msg)
        return self

    @property
    def tls_enabled(self) -> bool:
        return self.tls_cert_file is not None and self.tls_key_file is not None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> "GatewayConfig":
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read (defaults to os.environ)
            **overrides: Field values that win over the environment;
                None values are ignored

        Returns:
            Validated GatewayConfig

        Raises:
            ConfigError: If any value is invalid
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        policy_dirs = env.get("POLICY_DIRS", "")
        if policy_dirs:
            values["policy_dirs"] = tuple(Path(p) for p in policy_dirs.split(os.pathsep) if p)

        for var, field_name in _ENV_FIELDS.items():
            raw = env.get(var, "")
            if raw != "":
                values[field_name] = raw

        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            error = e.errors()[0]
            setting = ".".join(str(p) for p in error.get("loc", ())) or "config"
            raise ConfigError(
                message=f"Invalid configuration: {error.get('msg', e)}",
                setting=setting,
                value=str(error.get("input")),
            ) from e
