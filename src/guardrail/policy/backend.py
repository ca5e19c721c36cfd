"""
Rule backend interface.

The core never interprets the rule language. A backend parses one
source file (reporting its package) and evaluates a named rule
collection over a set of modules. Any declarative engine satisfying
RuleBackend can be substituted without touching the loader,
evaluator or gateway.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class PolicyModule(BaseModel):
    """
    One parsed rule file.

    Attributes:
        source: Path the module was read from
        package: Declared dotted package path (no "data." prefix)
        text: Source text, handed back to the backend at evaluation time
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: str = Field(..., min_length=1)
    package: str = Field(..., min_length=1)
    text: str


@runtime_checkable
class RuleBackend(Protocol):
    """
    Pluggable rule-evaluation capability.

    Implementations must be safe to call from several threads at once
    and must not retain state between evaluate() calls.
    """

    #: File suffix of policy sources this backend understands
    file_suffix: str

    def parse(self, source: str, text: str) -> PolicyModule:
        """
        Parse one source file.

        Raises:
            PolicyParseError: If the text is not a valid module
        """
        ...

    def evaluate(
        self,
        rule: str,
        modules: Sequence[PolicyModule],
        input: Mapping[str, Any],
        data: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        """
        Evaluate a multi-valued rule collection.

        Args:
            rule: Dotted rule path, e.g. "kubernetes.admission.pod.deny"
            modules: Every module in the snapshot (packages may import each other)
            input: Input document
            data: Optional auxiliary data document

        Returns:
            The values the collection produced (empty if undefined)

        Raises:
            EvaluationError: If evaluation fails at runtime
        """
        ...
