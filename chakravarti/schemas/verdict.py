"""
Verdict schema - the verifier's judgment of an attempt.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class CriterionResult:
    """Pass/fail for a single acceptance criterion."""
    criterion: str
    passed: bool
    detail: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"criterion": self.criterion, "passed": self.passed}
        if self.detail:
            result["detail"] = self.detail
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CriterionResult":
        return cls(
            criterion=data["criterion"],
            passed=bool(data["passed"]),
            detail=data.get("detail"),
        )


@dataclass(frozen=True)
class Verdict:
    """
    Per-criterion and overall pass/fail judgment.

    Attributes:
        criteria: One result per acceptance criterion, in spec order
        unsatisfiable: Verifier determined the criteria cannot be met at all
            (fatal; the job fails without further attempts)
        notes: Free-form verifier notes
    """
    criteria: tuple[CriterionResult, ...] = field(default_factory=tuple)
    unsatisfiable: bool = False
    notes: str = ""

    @classmethod
    def from_flags(cls, acceptance: list[str] | tuple[str, ...], passed: bool) -> "Verdict":
        """Build a verdict giving every criterion the same result."""
        return cls(criteria=tuple(CriterionResult(c, passed) for c in acceptance))

    @property
    def passed(self) -> bool:
        """Overall verdict: every criterion passed and none is unsatisfiable."""
        return not self.unsatisfiable and all(c.passed for c in self.criteria)

    @property
    def unmet(self) -> list[str]:
        return [c.criterion for c in self.criteria if not c.passed]

    def summary(self) -> str:
        passed = sum(1 for c in self.criteria if c.passed)
        return f"{passed}/{len(self.criteria)} acceptance criteria passed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "criteria": [c.to_dict() for c in self.criteria],
            "passed": self.passed,
            "unsatisfiable": self.unsatisfiable,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Verdict":
        return cls(
            criteria=tuple(CriterionResult.from_dict(c) for c in data.get("criteria", [])),
            unsatisfiable=data.get("unsatisfiable", False),
            notes=data.get("notes", ""),
        )
