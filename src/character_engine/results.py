from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List


class Reason(str, Enum):
    APPLIED = "applied"
    CLEARED = "cleared"
    NO_CHANGE = "no-change"
    CATALOGUE_MISS = "catalogue-miss"
    BOUND_VIOLATION = "bound-violation"
    CLASS_REQUIRED = "class-required"
    NOT_FOUND = "not-found"
    CAP_REACHED = "cap-reached"
    NOT_OFFERED = "not-offered"
    ALREADY_SELECTED = "already-selected"
    ALREADY_PROFICIENT = "already-proficient"
    REQUIREMENTS_NOT_MET = "requirements-not-met"


@dataclass(slots=True)
class Outcome:
    """Result of one public engine operation."""

    applied: bool
    reason: Reason
    message: str = ""
    warnings: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.applied

    @classmethod
    def ok(cls, message: str = "", reason: Reason = Reason.APPLIED) -> "Outcome":
        return cls(applied=True, reason=reason, message=message)

    @classmethod
    def refused(cls, reason: Reason, message: str = "") -> "Outcome":
        return cls(applied=False, reason=reason, message=message)
