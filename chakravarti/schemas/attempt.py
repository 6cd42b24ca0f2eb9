"""
Attempt schemas - one full execution of a Plan and its terminal result.

Jobs may be retried, creating multiple attempts. Each attempt records the
plan it executed, the step results in completion order and a single result.
Attempts are immutable once finalized.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .plan import Plan
from .step import ExecutionStatus, StepExecutionResult
from .verdict import Verdict


class AttemptStatus(str, Enum):
    """Terminal status of an attempt."""
    SUCCESS = "success"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class AttemptResult:
    """
    Result of an attempt: Success, Failed(reason) or Aborted(reason).

    Attributes:
        status: success, failed or aborted
        reason: Human-readable cause for failed/aborted attempts
    """
    status: AttemptStatus
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> "AttemptResult":
        return cls(AttemptStatus.SUCCESS)

    @classmethod
    def failed(cls, reason: str) -> "AttemptResult":
        return cls(AttemptStatus.FAILED, reason)

    @classmethod
    def aborted(cls, reason: str) -> "AttemptResult":
        return cls(AttemptStatus.ABORTED, reason)

    @property
    def is_success(self) -> bool:
        return self.status == AttemptStatus.SUCCESS

    def __str__(self) -> str:
        if self.reason:
            return f"{self.status.value}: {self.reason}"
        return self.status.value

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value}
        if self.reason is not None:
            result["reason"] = self.reason
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AttemptResult":
        return cls(AttemptStatus(data["status"]), data.get("reason"))


@dataclass(frozen=True)
class Attempt:
    """
    A record of a single execution attempt of a job.

    Attributes:
        number: Attempt number (1-indexed, monotonic within a job)
        plan: The plan this attempt executed
        step_results: Step results in completion order
        result: Terminal result of the attempt
        started_at: When this attempt started
        completed_at: When this attempt completed
        verdict: Verifier judgment, if verification ran
        diff: Workspace patch recorded by a commit step
        error: Attempt-level error outside any step (workspace, verifier):
            {type, message, retryable}
    """
    number: int
    plan: Plan
    result: AttemptResult
    started_at: datetime
    completed_at: datetime
    step_results: tuple[StepExecutionResult, ...] = field(default_factory=tuple)
    verdict: Optional[Verdict] = None
    diff: Optional[str] = None
    error: Optional[dict[str, Any]] = None

    def __post_init__(self):
        if self.number < 1:
            raise ValueError("number must be >= 1")

    def get_result(self, step_id: str) -> Optional[StepExecutionResult]:
        """Get the execution result for a specific step."""
        for result in self.step_results:
            if result.step_id == step_id:
                return result
        return None

    def get_failed_results(self) -> tuple[StepExecutionResult, ...]:
        """Get results of steps that failed or timed out."""
        return tuple(
            r for r in self.step_results
            if r.status in (ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT)
        )

    def get_completed_results(self) -> tuple[StepExecutionResult, ...]:
        return tuple(r for r in self.step_results if r.status == ExecutionStatus.SUCCESS)

    @property
    def duration_ms(self) -> int:
        delta = self.completed_at - self.started_at
        return int(delta.total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "number": self.number,
            "plan": self.plan.to_dict(),
            "result": self.result.to_dict(),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "step_results": [r.to_dict() for r in self.step_results],
        }
        if self.verdict is not None:
            result["verdict"] = self.verdict.to_dict()
        if self.diff is not None:
            result["diff"] = self.diff
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attempt":
        """Deserialize from dictionary."""
        verdict = data.get("verdict")
        return cls(
            number=data["number"],
            plan=Plan.from_dict(data["plan"]),
            result=AttemptResult.from_dict(data["result"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=datetime.fromisoformat(data["completed_at"]),
            step_results=tuple(StepExecutionResult.from_dict(r) for r in data.get("step_results", [])),
            verdict=Verdict.from_dict(verdict) if verdict else None,
            diff=data.get("diff"),
            error=data.get("error"),
        )
