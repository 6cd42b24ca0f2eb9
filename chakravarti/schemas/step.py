"""
Step schemas - plan steps and their execution results.

Step is the static definition of one unit of work inside a Plan.
StepStatus tracks where a step is in its lifecycle during an attempt.
StepExecutionResult is produced exactly once for each step of an attempt.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class StepKind(str, Enum):
    """Type of step; determines which collaborator executes it."""
    ANALYZE = "analyze"
    GENERATE = "generate"
    EXECUTE = "execute"
    TEST = "test"
    COMMIT = "commit"


class StepStatus(str, Enum):
    """Lifecycle status of a step within an attempt."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED)


# Pending -> Running -> {Completed | Failed}, or Pending -> Skipped.
STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING, StepStatus.SKIPPED}),
    StepStatus.RUNNING: frozenset({StepStatus.COMPLETED, StepStatus.FAILED}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}


@dataclass(frozen=True)
class Step:
    """
    A single step in an execution plan.

    Attributes:
        id: Unique identifier within the plan
        name: Human-readable name
        kind: Step kind (selects the executing collaborator)
        depends_on: Ids of steps that must complete before this one
        command: Shell command for execute/test steps
        prompt: Jinja2 prompt template for analyze/generate steps
        timeout_s: Per-step timeout override in seconds
    """
    id: str
    name: str
    kind: StepKind
    depends_on: tuple[str, ...] = field(default_factory=tuple)
    command: Optional[str] = None
    prompt: Optional[str] = None
    timeout_s: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "depends_on": list(self.depends_on),
        }
        if self.command is not None:
            result["command"] = self.command
        if self.prompt is not None:
            result["prompt"] = self.prompt
        if self.timeout_s is not None:
            result["timeout_s"] = self.timeout_s
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Step":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            kind=StepKind(data["kind"]),
            depends_on=tuple(data.get("depends_on", [])),
            command=data.get("command"),
            prompt=data.get("prompt"),
            timeout_s=data.get("timeout_s"),
        )


class ExecutionStatus(str, Enum):
    """Outcome recorded on a StepExecutionResult."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class StepExecutionResult:
    """
    Result of executing (or skipping) a single step.

    Attributes:
        step_id: Step that was executed
        status: success, failed, skipped or timeout
        outputs: Named outputs collected from the step
        stdout: Captured standard output
        stderr: Captured standard error (or the failure message)
        duration_ms: Execution duration in milliseconds
        error: Root error of a failure: {type, message, retryable}
    """
    step_id: str
    status: ExecutionStatus
    outputs: dict[str, str] = field(default_factory=dict)
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    error: Optional[dict[str, Any]] = None

    @property
    def is_success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    @property
    def retryable(self) -> bool:
        """Whether the failure recorded on this result may succeed on a fresh attempt."""
        if self.error is None:
            return True
        return bool(self.error.get("retryable", False))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "step_id": self.step_id,
            "status": self.status.value,
            "outputs": dict(self.outputs),
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_ms": self.duration_ms,
        }
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StepExecutionResult":
        return cls(
            step_id=data["step_id"],
            status=ExecutionStatus(data["status"]),
            outputs=dict(data.get("outputs", {})),
            stdout=data.get("stdout", ""),
            stderr=data.get("stderr", ""),
            duration_ms=data.get("duration_ms", 0),
            error=data.get("error"),
        )
