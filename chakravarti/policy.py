"""
RetryPolicy - decides what happens after an attempt.

decide(job, attempt) returns one of:
- Done: the attempt succeeded
- Retry(feedback): the failure is retryable and attempts remain; the
  feedback goes to the planner for a fresh plan
- Abort(reason, state): stop the job, as Failed (fatal) or Abandoned
  (attempts exhausted, or cancelled)

Classification of a failed attempt:
- Fatal: any failed step or attempt-level error whose record says
  retryable=False (invalid spec, cyclic plan, command not allowed, unknown
  errors), or a verdict that marks the criteria unsatisfiable
- Retryable: transient collaborator errors, step timeouts, failing test
  commands and unmet acceptance criteria

Fatal short-circuits to Abort regardless of remaining attempts.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from chakravarti.schemas import (
    Attempt,
    AttemptStatus,
    ExecutionStatus,
    FailedStepFeedback,
    Feedback,
    Job,
    RunState,
)

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_EXCEEDED = "max attempts exceeded"


class FailureClass(str, Enum):
    """How a failed attempt is treated."""
    RETRYABLE = "retryable"
    FATAL = "fatal"
    CANCELLED = "cancelled"


class DecisionKind(str, Enum):
    DONE = "done"
    RETRY = "retry"
    ABORT = "abort"


@dataclass(frozen=True)
class Decision:
    """
    Outcome of RetryPolicy.decide().

    Attributes:
        kind: done, retry or abort
        feedback: Feedback for the next planning round (retry only)
        reason: Why the job stops (abort only)
        state: Terminal RunState for an abort (Failed or Abandoned)
    """
    kind: DecisionKind
    feedback: Optional[Feedback] = None
    reason: Optional[str] = None
    state: Optional[RunState] = None

    @classmethod
    def done(cls) -> "Decision":
        return cls(DecisionKind.DONE)

    @classmethod
    def retry(cls, feedback: Feedback) -> "Decision":
        return cls(DecisionKind.RETRY, feedback=feedback)

    @classmethod
    def abort(cls, reason: str, state: RunState) -> "Decision":
        return cls(DecisionKind.ABORT, reason=reason, state=state)

    def __str__(self) -> str:
        if self.kind == DecisionKind.ABORT:
            return f"abort ({self.state.value}): {self.reason}"
        return self.kind.value


class RetryPolicy:
    """
    Bounded retry-and-replan policy.

    Stateless; the attempt budget comes from job.config.max_attempts.
    """

    def classify(self, attempt: Attempt) -> FailureClass:
        """Classify a failed or aborted attempt."""
        if attempt.result.status == AttemptStatus.ABORTED:
            return FailureClass.CANCELLED

        if attempt.error is not None and not attempt.error.get("retryable", False):
            return FailureClass.FATAL

        if attempt.verdict is not None and attempt.verdict.unsatisfiable:
            return FailureClass.FATAL

        for result in attempt.get_failed_results():
            if not result.retryable:
                return FailureClass.FATAL

        return FailureClass.RETRYABLE

    def decide(self, job: Job, attempt: Attempt) -> Decision:
        """
        Decide the next move after an attempt.

        Args:
            job: The job (its attempt history already includes attempt)
            attempt: The latest attempt
        """
        if attempt.result.is_success:
            return Decision.done()

        failure = self.classify(attempt)
        reason = attempt.result.reason or attempt.result.status.value

        if failure == FailureClass.CANCELLED:
            decision = Decision.abort(reason, RunState.ABANDONED)
        elif failure == FailureClass.FATAL:
            decision = Decision.abort(reason, RunState.FAILED)
        elif len(job.attempts) < job.config.max_attempts:
            decision = Decision.retry(self.build_feedback(attempt))
        else:
            decision = Decision.abort(MAX_ATTEMPTS_EXCEEDED, RunState.ABANDONED)

        logger.info(
            "Job %s attempt %d/%d: %s",
            job.id, attempt.number, job.config.max_attempts, decision,
        )
        return decision

    def build_feedback(self, attempt: Attempt) -> Feedback:
        """Collect failed steps (with stderr/outputs) and unmet criteria."""
        failed_steps = tuple(
            FailedStepFeedback(
                step_id=r.step_id,
                reason="timeout" if r.status == ExecutionStatus.TIMEOUT else (r.error or {}).get("message", "failed"),
                stderr=r.stderr,
                outputs=dict(r.outputs),
            )
            for r in attempt.get_failed_results()
        )
        unmet = tuple(attempt.verdict.unmet) if attempt.verdict is not None else ()
        return Feedback(
            attempt_number=attempt.number,
            reason=attempt.result.reason or "",
            failed_steps=failed_steps,
            unmet_criteria=unmet,
        )
