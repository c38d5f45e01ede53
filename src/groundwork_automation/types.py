from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

ABSENT = "absent"
PRESENT = "present"
UNKNOWN = "unknown"

SKIPPED = "skipped"
APPLIED = "applied"
FAILED = "failed"


@dataclass(frozen=True)
class ResourceState:
    """Observed state of a resource: absent, present (with a value) or unknown."""

    kind: str
    value: Optional[str] = None

    @classmethod
    def absent(cls) -> "ResourceState":
        return cls(ABSENT)

    @classmethod
    def present(cls, value: Optional[str] = None) -> "ResourceState":
        return cls(PRESENT, value)

    @classmethod
    def unknown(cls, reason: Optional[str] = None) -> "ResourceState":
        return cls(UNKNOWN, reason)

    @property
    def is_present(self) -> bool:
        return self.kind == PRESENT

    @property
    def is_absent(self) -> bool:
        return self.kind == ABSENT

    @property
    def is_unknown(self) -> bool:
        return self.kind == UNKNOWN

    def describe(self) -> str:
        if self.value:
            return f"{self.kind}({self.value})"
        return self.kind


@dataclass(frozen=True)
class StepResult:
    action: str
    outcome: str
    details: str = ""
    duration: float = 0.0
    resource: Optional[str] = None
    fatal: bool = False
    attempted: bool = True
    facts: dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.outcome == FAILED

    @property
    def applied(self) -> bool:
        return self.outcome == APPLIED

    @property
    def skipped(self) -> bool:
        return self.outcome == SKIPPED

    @property
    def succeeded(self) -> bool:
        return self.attempted and self.outcome != FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "outcome": self.outcome,
            "details": self.details,
            "duration": round(self.duration, 3),
            "resource": self.resource,
            "fatal": self.fatal,
            "attempted": self.attempted,
            "facts": dict(self.facts),
        }
