"""
Orchestrator - drives a Job from Pending to a terminal RunState.

The Orchestrator implements:
- The RunState machine (Pending, Planning, Executing, Verifying, Succeeded,
  Failed, Abandoned)
- Plan generation through the Planner collaborator, with feedback from the
  previous attempt on replans
- One AttemptRunner per attempt
- RetryPolicy decisions after each attempt
- Cancellation and the optional job wall clock timeout
- Job persistence through an optional JobStore

Execution flow:
1. Pending -> Planning: validate the spec, ask the planner for a plan and
   check that its steps form a DAG (any planning error -> Failed)
2. Planning -> Executing: AttemptStarted, run the attempt (Executing ->
   Verifying when verification begins), AttemptCompleted
3. Consult the RetryPolicy:
   - Done -> Succeeded
   - Retry(feedback) -> Planning (fresh plan, fresh attempt)
   - Abort(reason) -> Failed (fatal) or Abandoned (exhausted / cancelled)

Every state change emits StateChanged before the work that depends on it.

Usage:
    orchestrator = Orchestrator(Collaborators.noop(), events=EventBus())
    job = await orchestrator.run(spec, JobConfig(max_attempts=3))
    job.state  # RunState.SUCCEEDED
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from chakravarti.errors import ChakravartiError
from chakravarti.events import EventSink, JobEventStream
from chakravarti.graph import StepGraph
from chakravarti.handlers.base import Collaborators
from chakravarti.handlers.registry import HandlerRegistry
from chakravarti.job_store import JobStore, generate_ulid
from chakravarti.policy import DecisionKind, RetryPolicy
from chakravarti.runner import CANCELLED, AttemptRunner
from chakravarti.schemas import (
    EventType,
    Feedback,
    Job,
    JobConfig,
    Plan,
    PlanContext,
    RunState,
    Spec,
)

logger = logging.getLogger(__name__)

JOB_TIMEOUT = "job timeout"


@dataclass
class _ActiveJob:
    """Mutable bookkeeping for a job that is currently running."""
    job: Job
    events: JobEventStream
    runner: Optional[AttemptRunner] = None
    planning_task: Optional[asyncio.Task] = None
    cancel_reason: Optional[str] = None


class Orchestrator:
    """
    Top-level job state machine.

    One orchestrator may run several jobs concurrently; jobs share only the
    event sink and the store.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        events: Optional[EventSink] = None,
        store: Optional[JobStore] = None,
        policy: Optional[RetryPolicy] = None,
        handlers: Optional[HandlerRegistry] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            collaborators: Planner, model, sandbox, verifier and git collaborators
            events: Sink receiving every JobEvent
            store: JobStore for persisting job records
            policy: Retry policy (default RetryPolicy())
            handlers: Handler registry (default: wired to collaborators)
        """
        self._collaborators = collaborators
        self._events = events
        self._store = store
        self._policy = policy or RetryPolicy()
        self._handlers = handlers or HandlerRegistry.create_default(collaborators)
        self._active: dict[str, _ActiveJob] = {}

    def create_job(self, spec: Spec, config: Optional[JobConfig] = None) -> Job:
        """Create a Pending job for a spec."""
        return Job(id=generate_ulid(), spec=spec, config=config or JobConfig())

    async def run(self, spec: Spec, config: Optional[JobConfig] = None) -> Job:
        """
        Create a job for spec and drive it to a terminal state.

        Returns:
            The terminal Job
        """
        return await self.execute(self.create_job(spec, config))

    async def execute(self, job: Job) -> Job:
        """
        Drive an existing Pending job to a terminal state.

        If the calling task is cancelled, the job is cancelled the same way
        cancel() does it: the running attempt is aborted, the job ends
        Abandoned and is saved, and then CancelledError propagates.

        Raises:
            ValueError: If the job is not Pending or is already running
            asyncio.CancelledError: If the calling task was cancelled
        """
        if job.state != RunState.PENDING:
            raise ValueError(f"Job {job.id} is {job.state.value}, expected pending")
        if job.id in self._active:
            raise ValueError(f"Job {job.id} is already running")

        active = _ActiveJob(job=job, events=JobEventStream(job.id, self._events))
        self._active[job.id] = active

        timeout_handle = None
        if job.config.job_timeout_s is not None:
            loop = asyncio.get_running_loop()
            timeout_handle = loop.call_later(job.config.job_timeout_s, self._cancel_job, active, JOB_TIMEOUT)

        logger.info("Starting job %s for spec %s", job.id, job.spec.id)
        drive = asyncio.ensure_future(self._drive(active))
        try:
            try:
                await asyncio.shield(drive)
            except asyncio.CancelledError:
                # The caller's task was cancelled: wind the job down to
                # Abandoned before letting the cancellation through
                self._cancel_job(active, CANCELLED)
                await drive
                raise
        finally:
            if timeout_handle is not None:
                timeout_handle.cancel()
            self._active.pop(job.id, None)

        logger.info("Job %s finished: %s (%s)", job.id, job.state.value, job.reason or "ok")
        return job

    def cancel(self, reason: str = CANCELLED, job_id: Optional[str] = None) -> int:
        """
        Cancel running jobs.

        Args:
            reason: Reason recorded on the aborted attempt and the job
            job_id: Only cancel this job (default: every running job)

        Returns:
            Number of jobs the cancellation reached
        """
        targets = [a for a in self._active.values() if job_id is None or a.job.id == job_id]
        for active in targets:
            self._cancel_job(active, reason)
        return len(targets)

    @property
    def active_jobs(self) -> list[Job]:
        return [a.job for a in self._active.values()]

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    async def _drive(self, active: _ActiveJob) -> None:
        job = active.job
        feedback: Optional[Feedback] = None

        self._transition(active, RunState.PLANNING)
        while True:
            if active.cancel_reason is not None:
                self._transition(active, RunState.ABANDONED, active.cancel_reason)
                return

            plan = await self._plan(active, feedback)
            if plan is None:
                return

            self._transition(active, RunState.EXECUTING)
            number = job.next_attempt_number
            active.events.emit(EventType.ATTEMPT_STARTED, attempt=number, plan_id=plan.id)

            runner = AttemptRunner(self._collaborators, job.config, active.events, self._handlers)
            active.runner = runner
            if active.cancel_reason is not None:
                runner.cancel(active.cancel_reason)
            try:
                attempt = await runner.run(
                    plan,
                    number=number,
                    on_verifying=lambda: self._transition(active, RunState.VERIFYING),
                )
            except Exception as e:
                logger.exception("Job %s attempt %d crashed", job.id, number)
                self._transition(active, RunState.FAILED, f"attempt {number} crashed: {e}")
                raise
            finally:
                active.runner = None

            job.add_attempt(attempt)
            active.events.emit(
                EventType.ATTEMPT_COMPLETED,
                attempt=number,
                result=attempt.result.status.value,
                reason=attempt.result.reason,
            )
            self._save(job)

            decision = self._policy.decide(job, attempt)
            if decision.kind == DecisionKind.DONE:
                self._transition(active, RunState.SUCCEEDED)
                return
            if decision.kind == DecisionKind.RETRY:
                feedback = decision.feedback
                job.last_feedback = feedback
                self._transition(active, RunState.PLANNING)
                continue
            self._transition(active, decision.state, decision.reason)
            return

    async def _plan(self, active: _ActiveJob, feedback: Optional[Feedback]) -> Optional[Plan]:
        """Run one planning round. Returns None once the job is terminal."""
        job = active.job
        try:
            job.spec.validate()
            active.planning_task = asyncio.ensure_future(
                self._collaborators.planner.plan(job.spec, PlanContext(spec=job.spec, feedback=feedback))
            )
            plan = await active.planning_task
            StepGraph.build(plan.steps)
        except asyncio.CancelledError:
            if active.cancel_reason is None:
                raise
            self._transition(active, RunState.ABANDONED, active.cancel_reason)
            return None
        except ChakravartiError as e:
            logger.error("Job %s: planning failed: %s", job.id, e)
            self._transition(active, RunState.FAILED, f"planning failed: {e}")
            return None
        except Exception as e:
            logger.exception("Job %s: planner raised %s", job.id, type(e).__name__)
            self._transition(active, RunState.FAILED, f"planning failed: {type(e).__name__}: {e}")
            return None
        finally:
            active.planning_task = None

        if active.cancel_reason is not None:
            self._transition(active, RunState.ABANDONED, active.cancel_reason)
            return None

        logger.info("Job %s: plan %s with %d step(s)", job.id, plan.id, len(plan.steps))
        return plan

    def _transition(self, active: _ActiveJob, to_state: RunState, reason: Optional[str] = None) -> None:
        job = active.job
        previous = job.transition(to_state, reason)
        active.events.emit(
            EventType.STATE_CHANGED,
            from_state=previous.value,
            to_state=to_state.value,
            reason=reason,
        )
        logger.debug("Job %s: %s -> %s", job.id, previous.value, to_state.value)
        if to_state.is_terminal:
            self._save(job)

    def _cancel_job(self, active: _ActiveJob, reason: str) -> None:
        if active.job.is_terminal:
            return
        if active.cancel_reason is None:
            active.cancel_reason = reason
            logger.info("Cancelling job %s: %s", active.job.id, reason)
        if active.runner is not None:
            active.runner.cancel(active.cancel_reason)
        if active.planning_task is not None:
            active.planning_task.cancel()

    def _save(self, job: Job) -> None:
        if self._store is None:
            return
        try:
            self._store.save_job(job)
        except OSError as e:
            logger.error("Failed to persist job %s: %s", job.id, e)
