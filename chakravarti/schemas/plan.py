"""
Plan schemas - the per-round execution plan and the context that produced it.

A Plan is produced once per planning round. It is never mutated: when the
retry policy asks for a replan, the planner receives a PlanContext carrying
Feedback from the failed attempt and returns a brand new Plan.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .spec import Spec
from .step import Step


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FailedStepFeedback:
    """What one failed step left behind, as handed back to the planner."""
    step_id: str
    reason: str
    stderr: str = ""
    outputs: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "reason": self.reason,
            "stderr": self.stderr,
            "outputs": dict(self.outputs),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FailedStepFeedback":
        return cls(
            step_id=data["step_id"],
            reason=data.get("reason", ""),
            stderr=data.get("stderr", ""),
            outputs=dict(data.get("outputs", {})),
        )


@dataclass(frozen=True)
class Feedback:
    """
    Failure context from a previous attempt.

    Attributes:
        attempt_number: The attempt that produced this feedback
        reason: Human-readable failure reason of that attempt
        failed_steps: Failed steps with their stderr/outputs
        unmet_criteria: Acceptance criteria the verifier did not pass
    """
    attempt_number: int
    reason: str
    failed_steps: tuple[FailedStepFeedback, ...] = field(default_factory=tuple)
    unmet_criteria: tuple[str, ...] = field(default_factory=tuple)

    @property
    def failed_step_ids(self) -> list[str]:
        return [f.step_id for f in self.failed_steps]

    def summary(self) -> str:
        """Render the feedback as prompt text for a planner or model."""
        lines = [f"Attempt {self.attempt_number} failed: {self.reason}"]
        for failed in self.failed_steps:
            lines.append(f"- step {failed.step_id}: {failed.reason}")
            if failed.stderr:
                lines.append(f"  stderr: {failed.stderr.strip()[:2000]}")
        if self.unmet_criteria:
            lines.append("Unmet acceptance criteria:")
            lines.extend(f"- {c}" for c in self.unmet_criteria)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_number": self.attempt_number,
            "reason": self.reason,
            "failed_steps": [f.to_dict() for f in self.failed_steps],
            "unmet_criteria": list(self.unmet_criteria),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Feedback":
        return cls(
            attempt_number=data["attempt_number"],
            reason=data.get("reason", ""),
            failed_steps=tuple(FailedStepFeedback.from_dict(f) for f in data.get("failed_steps", [])),
            unmet_criteria=tuple(data.get("unmet_criteria", [])),
        )


@dataclass(frozen=True)
class PlanContext:
    """Context a plan was generated from: spec snapshot plus optional prior feedback."""
    spec: Spec
    feedback: Optional[Feedback] = None

    @property
    def is_replan(self) -> bool:
        return self.feedback is not None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"spec": self.spec.to_dict()}
        if self.feedback is not None:
            result["feedback"] = self.feedback.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlanContext":
        feedback = data.get("feedback")
        return cls(
            spec=Spec.from_dict(data["spec"]),
            feedback=Feedback.from_dict(feedback) if feedback else None,
        )


@dataclass(frozen=True)
class Plan:
    """
    A deterministic DAG of execution steps.

    Attributes:
        id: Unique plan identifier
        spec_id: Id of the source specification
        steps: Steps in plan order (dependencies reference ids in this tuple)
        context: Planning context that produced this plan
        created_at: When the plan was generated
    """
    id: str
    spec_id: str
    steps: tuple[Step, ...]
    context: PlanContext
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(cls, context: PlanContext, steps: list[Step] | tuple[Step, ...]) -> "Plan":
        """Create a plan with a fresh id for the context's spec."""
        return cls(
            id=str(uuid.uuid4()),
            spec_id=context.spec.id,
            steps=tuple(steps),
            context=context,
        )

    @property
    def goal(self) -> str:
        return self.context.spec.goal

    def get_step(self, step_id: str) -> Optional[Step]:
        """Get a step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "spec_id": self.spec_id,
            "steps": [s.to_dict() for s in self.steps],
            "context": self.context.to_dict(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Plan":
        return cls(
            id=data["id"],
            spec_id=data["spec_id"],
            steps=tuple(Step.from_dict(s) for s in data.get("steps", [])),
            context=PlanContext.from_dict(data["context"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )
