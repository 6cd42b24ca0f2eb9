"""
JobEvent schema - append-only progress notifications.

Events are a projection of job state changes for external observers. Each
event carries the job id, a per-job sequence number (strictly increasing from
1) and a UTC timestamp, so a stream can be replayed and totally ordered per
job. Events are never mutated after emission.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class EventType(str, Enum):
    """Kinds of job events."""
    STATE_CHANGED = "state.changed"
    STEP_STARTED = "step.started"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"
    STEP_SKIPPED = "step.skipped"
    ATTEMPT_STARTED = "attempt.started"
    ATTEMPT_COMPLETED = "attempt.completed"

    @property
    def is_step_event(self) -> bool:
        return self.value.startswith("step.")

    @property
    def is_step_terminal(self) -> bool:
        return self in (EventType.STEP_COMPLETED, EventType.STEP_FAILED, EventType.STEP_SKIPPED)


@dataclass(frozen=True)
class JobEvent:
    """
    A single progress notification.

    Attributes:
        type: Event kind
        job_id: Job the event belongs to
        seq: Per-job sequence number, starting at 1
        timestamp: When the event was emitted (UTC)
        payload: Event-specific fields, e.g.
            state.changed: from_state, to_state, reason
            step.*: step_id, attempt, reason / duration_ms
            attempt.*: attempt, result, reason
    """
    type: EventType
    job_id: str
    seq: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def step_id(self) -> Optional[str]:
        return self.payload.get("step_id")

    @property
    def attempt(self) -> Optional[int]:
        return self.payload.get("attempt")

    @property
    def reason(self) -> Optional[str]:
        return self.payload.get("reason")

    def describe(self) -> str:
        """One-line human readable rendering."""
        p = self.payload
        if self.type == EventType.STATE_CHANGED:
            text = f"state {p.get('from_state')} -> {p.get('to_state')}"
        elif self.type == EventType.ATTEMPT_STARTED:
            text = f"attempt {p.get('attempt')} started"
        elif self.type == EventType.ATTEMPT_COMPLETED:
            text = f"attempt {p.get('attempt')} {p.get('result')}"
        else:
            verb = self.type.value.split(".", 1)[1]
            text = f"step {p.get('step_id')} {verb}"
        if p.get("reason"):
            text += f" ({p['reason']})"
        return text

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "type": self.type.value,
            "job_id": self.job_id,
            "seq": self.seq,
            "timestamp": self.timestamp.isoformat(),
            "payload": dict(self.payload),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobEvent":
        return cls(
            type=EventType(data["type"]),
            job_id=data["job_id"],
            seq=data["seq"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            payload=dict(data.get("payload", {})),
        )
