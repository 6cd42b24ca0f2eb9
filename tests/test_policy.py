"""Tests for RetryPolicy classification and decisions."""

from datetime import datetime, timezone

import pytest

from chakravarti.policy import MAX_ATTEMPTS_EXCEEDED, DecisionKind, FailureClass, RetryPolicy
from chakravarti.schemas import (
    Attempt,
    AttemptResult,
    CriterionResult,
    ExecutionStatus,
    Job,
    JobConfig,
    Plan,
    PlanContext,
    RunState,
    StepExecutionResult,
    Verdict,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _attempt(spec, number=1, result=None, step_results=(), verdict=None, error=None) -> Attempt:
    return Attempt(
        number=number,
        plan=Plan.new(PlanContext(spec=spec), []),
        result=result or AttemptResult.failed("step `test` failed: exit code 1"),
        started_at=NOW,
        completed_at=NOW,
        step_results=tuple(step_results),
        verdict=verdict,
        error=error,
    )


def _failed(step_id="test", retryable=True, status=ExecutionStatus.FAILED) -> StepExecutionResult:
    return StepExecutionResult(
        step_id=step_id,
        status=status,
        stderr="assert False",
        outputs={"exit_code": "1"},
        error={"type": "CommandFailedError", "message": "exit code 1", "retryable": retryable},
    )


def _job(spec, attempts, max_attempts=3) -> Job:
    job = Job(id="01JOB", spec=spec, config=JobConfig(max_attempts=max_attempts))
    for attempt in attempts:
        job.add_attempt(attempt)
    return job


@pytest.fixture
def policy():
    return RetryPolicy()


class TestClassify:
    def test_retryable_step_failure(self, policy, spec):
        assert policy.classify(_attempt(spec, step_results=[_failed()])) == FailureClass.RETRYABLE

    def test_non_retryable_step_failure(self, policy, spec):
        attempt = _attempt(spec, step_results=[_failed(retryable=False)])
        assert policy.classify(attempt) == FailureClass.FATAL

    def test_timeout_is_retryable(self, policy, spec):
        timeout = StepExecutionResult(
            step_id="slow",
            status=ExecutionStatus.TIMEOUT,
            error={"type": "StepTimeout", "message": "timed out", "retryable": True},
        )
        assert policy.classify(_attempt(spec, step_results=[timeout])) == FailureClass.RETRYABLE

    def test_aborted_is_cancelled(self, policy, spec):
        attempt = _attempt(spec, result=AttemptResult.aborted("cancelled"))
        assert policy.classify(attempt) == FailureClass.CANCELLED

    def test_unsatisfiable_verdict_is_fatal(self, policy, spec):
        attempt = _attempt(spec, verdict=Verdict(unsatisfiable=True))
        assert policy.classify(attempt) == FailureClass.FATAL

    def test_unmet_criteria_are_retryable(self, policy, spec):
        verdict = Verdict(criteria=(CriterionResult("Login form renders", False),))
        assert policy.classify(_attempt(spec, verdict=verdict)) == FailureClass.RETRYABLE

    def test_attempt_error_uses_record(self, policy, spec):
        fatal = {"type": "GitError", "message": "no repo", "retryable": False}
        transient = {"type": "ModelNetworkError", "message": "reset", "retryable": True}
        assert policy.classify(_attempt(spec, error=fatal)) == FailureClass.FATAL
        assert policy.classify(_attempt(spec, error=transient)) == FailureClass.RETRYABLE


class TestDecide:
    def test_success_is_done(self, policy, spec):
        attempt = _attempt(spec, result=AttemptResult.success())
        assert policy.decide(_job(spec, [attempt]), attempt).kind == DecisionKind.DONE

    def test_retry_while_budget_remains(self, policy, spec):
        attempt = _attempt(spec, step_results=[_failed()])
        decision = policy.decide(_job(spec, [attempt]), attempt)
        assert decision.kind == DecisionKind.RETRY
        assert decision.feedback.failed_step_ids == ["test"]

    def test_abandon_when_budget_exhausted(self, policy, spec):
        attempts = [_attempt(spec, number=n, step_results=[_failed()]) for n in (1, 2, 3)]
        decision = policy.decide(_job(spec, attempts), attempts[-1])
        assert decision.kind == DecisionKind.ABORT
        assert decision.state == RunState.ABANDONED
        assert decision.reason == MAX_ATTEMPTS_EXCEEDED

    def test_fatal_aborts_regardless_of_budget(self, policy, spec):
        attempt = _attempt(spec, step_results=[_failed(retryable=False)])
        decision = policy.decide(_job(spec, [attempt], max_attempts=10), attempt)
        assert decision.kind == DecisionKind.ABORT
        assert decision.state == RunState.FAILED
        assert decision.reason == "step `test` failed: exit code 1"

    def test_cancelled_abandons(self, policy, spec):
        attempt = _attempt(spec, result=AttemptResult.aborted("job timeout"))
        decision = policy.decide(_job(spec, [attempt]), attempt)
        assert decision.state == RunState.ABANDONED
        assert decision.reason == "job timeout"

    def test_decision_str(self, policy, spec):
        attempt = _attempt(spec, step_results=[_failed(retryable=False)])
        decision = policy.decide(_job(spec, [attempt]), attempt)
        assert str(decision) == "abort (failed): step `test` failed: exit code 1"


class TestFeedback:
    def test_collects_failed_steps_and_unmet(self, policy, spec):
        verdict = Verdict(criteria=(
            CriterionResult("Login form renders", True),
            CriterionResult("Invalid credentials show an error", False),
        ))
        skipped = StepExecutionResult(step_id="commit", status=ExecutionStatus.SKIPPED)
        attempt = _attempt(spec, number=2, step_results=[_failed(), skipped], verdict=verdict)

        feedback = policy.build_feedback(attempt)
        assert feedback.attempt_number == 2
        assert feedback.reason == "step `test` failed: exit code 1"
        assert feedback.failed_step_ids == ["test"]
        assert feedback.failed_steps[0].stderr == "assert False"
        assert feedback.failed_steps[0].outputs == {"exit_code": "1"}
        assert feedback.unmet_criteria == ("Invalid credentials show an error",)

    def test_summary_mentions_everything(self, policy, spec):
        verdict = Verdict(criteria=(CriterionResult("Login form renders", False),))
        feedback = policy.build_feedback(_attempt(spec, step_results=[_failed()], verdict=verdict))
        summary = feedback.summary()
        assert "Attempt 1 failed" in summary
        assert "step test: exit code 1" in summary
        assert "- Login form renders" in summary
