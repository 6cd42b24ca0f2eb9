"""
Job schemas - the unit of work the orchestrator drives to a terminal state.

A Job owns its Spec reference, its JobConfig, the ordered Attempt history and
the current RunState. RunState changes go through Job.transition(), which
enforces RUN_STATE_TRANSITIONS:

    Pending   -> Planning
    Planning  -> Executing | Failed
    Executing -> Verifying | Planning | Succeeded | Failed | Abandoned
    Verifying -> Planning | Succeeded | Failed | Abandoned

Any non-terminal state may also move to Abandoned (cancellation). Succeeded,
Failed and Abandoned are terminal and have no exits.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from chakravarti.errors import InvalidTransitionError

from .attempt import Attempt
from .plan import Feedback
from .spec import Spec

JOB_RECORD_KIND = "chakravarti.job"
JOB_RECORD_VERSION = "1"

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_STEP_TIMEOUT_S = 300.0
DEFAULT_MAX_IN_FLIGHT = 4

CHEAP_MODEL = "gpt-4o-mini"
STRONG_MODEL = "gpt-4o"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OptimizeMode(str, Enum):
    """Model selection strategy."""
    COST = "cost"
    TIME = "time"
    BALANCED = "balanced"


class ModelTask(str, Enum):
    """What a model call is for; drives model selection."""
    PLANNING = "planning"
    EXECUTION = "execution"


@dataclass(frozen=True)
class JobConfig:
    """
    Per-job execution configuration.

    Attributes:
        max_attempts: Upper bound on attempts (>= 1)
        optimize: Model selection strategy
        planner_model: Explicit planner model override
        executor_model: Explicit executor model override
        step_timeout_s: Default per-step timeout in seconds
        job_timeout_s: Optional wall clock limit for the whole job
        max_in_flight: Max concurrently running steps within a batch
        base_branch: Branch isolated workspaces are created from
    """
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    optimize: OptimizeMode = OptimizeMode.BALANCED
    planner_model: Optional[str] = None
    executor_model: Optional[str] = None
    step_timeout_s: float = DEFAULT_STEP_TIMEOUT_S
    job_timeout_s: Optional[float] = None
    max_in_flight: int = DEFAULT_MAX_IN_FLIGHT
    base_branch: str = "main"

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        if self.step_timeout_s <= 0:
            raise ValueError("step_timeout_s must be positive")
        if self.job_timeout_s is not None and self.job_timeout_s <= 0:
            raise ValueError("job_timeout_s must be positive")

    def select_model(self, task: ModelTask) -> str:
        """
        Pick the model for a task.

        Explicit overrides win. Otherwise:
        - cost: the cheap model everywhere
        - time: the strong model everywhere
        - balanced: strong model for planning, cheap model for execution
        """
        if task == ModelTask.PLANNING and self.planner_model:
            return self.planner_model
        if task == ModelTask.EXECUTION and self.executor_model:
            return self.executor_model

        if self.optimize == OptimizeMode.COST:
            return CHEAP_MODEL
        if self.optimize == OptimizeMode.TIME:
            return STRONG_MODEL
        return STRONG_MODEL if task == ModelTask.PLANNING else CHEAP_MODEL

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "optimize": self.optimize.value,
            "planner_model": self.planner_model,
            "executor_model": self.executor_model,
            "step_timeout_s": self.step_timeout_s,
            "job_timeout_s": self.job_timeout_s,
            "max_in_flight": self.max_in_flight,
            "base_branch": self.base_branch,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobConfig":
        return cls(
            max_attempts=data.get("max_attempts", DEFAULT_MAX_ATTEMPTS),
            optimize=OptimizeMode(data.get("optimize", OptimizeMode.BALANCED.value)),
            planner_model=data.get("planner_model"),
            executor_model=data.get("executor_model"),
            step_timeout_s=data.get("step_timeout_s", DEFAULT_STEP_TIMEOUT_S),
            job_timeout_s=data.get("job_timeout_s"),
            max_in_flight=data.get("max_in_flight", DEFAULT_MAX_IN_FLIGHT),
            base_branch=data.get("base_branch", "main"),
        )


class RunState(str, Enum):
    """Lifecycle state of a job."""
    PENDING = "pending"
    PLANNING = "planning"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.FAILED, RunState.ABANDONED)


_ACTIVE_EXITS = frozenset({
    RunState.PLANNING,
    RunState.SUCCEEDED,
    RunState.FAILED,
    RunState.ABANDONED,
})

RUN_STATE_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.PENDING: frozenset({RunState.PLANNING, RunState.ABANDONED}),
    RunState.PLANNING: frozenset({RunState.EXECUTING, RunState.FAILED, RunState.ABANDONED}),
    RunState.EXECUTING: _ACTIVE_EXITS | {RunState.VERIFYING},
    RunState.VERIFYING: _ACTIVE_EXITS,
    RunState.SUCCEEDED: frozenset(),
    RunState.FAILED: frozenset(),
    RunState.ABANDONED: frozenset(),
}


@dataclass
class Job:
    """
    Runtime record of a job.

    Attributes:
        id: Job identifier (ULID, sortable by creation time)
        spec: The spec this job executes
        config: Execution configuration
        attempts: Attempt history in order
        state: Current RunState
        reason: Reason attached to the current terminal state
        last_feedback: Last feedback handed to the planner
        created_at: When the job was created
        updated_at: When the job last changed
    """
    id: str
    spec: Spec
    config: JobConfig = field(default_factory=JobConfig)
    attempts: list[Attempt] = field(default_factory=list)
    state: RunState = RunState.PENDING
    reason: Optional[str] = None
    last_feedback: Optional[Feedback] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def next_attempt_number(self) -> int:
        return len(self.attempts) + 1

    @property
    def latest_attempt(self) -> Optional[Attempt]:
        return self.attempts[-1] if self.attempts else None

    def can_transition(self, to_state: RunState) -> bool:
        return to_state in RUN_STATE_TRANSITIONS[self.state]

    def transition(self, to_state: RunState, reason: Optional[str] = None) -> RunState:
        """
        Move the job to a new state.

        Returns:
            The previous state

        Raises:
            InvalidTransitionError: If the lifecycle table forbids the move
        """
        if not self.can_transition(to_state):
            raise InvalidTransitionError(f"job {self.id}", self.state.value, to_state.value)
        previous = self.state
        self.state = to_state
        if to_state.is_terminal:
            self.reason = reason
        self.updated_at = _utcnow()
        return previous

    def add_attempt(self, attempt: Attempt) -> None:
        if attempt.number != self.next_attempt_number:
            raise ValueError(
                f"attempt number {attempt.number} out of order, expected {self.next_attempt_number}"
            )
        self.attempts.append(attempt)
        self.updated_at = _utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a self-describing dictionary for JSON output."""
        result: dict[str, Any] = {
            "kind": JOB_RECORD_KIND,
            "version": JOB_RECORD_VERSION,
            "id": self.id,
            "spec": self.spec.to_dict(),
            "config": self.config.to_dict(),
            "attempts": [a.to_dict() for a in self.attempts],
            "state": self.state.value,
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.last_feedback is not None:
            result["last_feedback"] = self.last_feedback.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        """Deserialize from dictionary."""
        kind = data.get("kind")
        if kind != JOB_RECORD_KIND:
            raise ValueError(f"Not a job record: kind={kind!r}")
        feedback = data.get("last_feedback")
        return cls(
            id=data["id"],
            spec=Spec.from_dict(data["spec"]),
            config=JobConfig.from_dict(data.get("config", {})),
            attempts=[Attempt.from_dict(a) for a in data.get("attempts", [])],
            state=RunState(data["state"]),
            reason=data.get("reason"),
            last_feedback=Feedback.from_dict(feedback) if feedback else None,
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
