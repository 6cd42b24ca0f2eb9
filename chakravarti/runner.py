"""
AttemptRunner - executes one Plan to completion.

The runner implements:
- Workspace isolation (one git workspace per attempt, always cleaned up)
- Batch scheduling over the StepGraph (barrier per batch)
- Concurrent steps within a batch, capped by JobConfig.max_in_flight
- Handler dispatch by StepKind via HandlerRegistry
- Per-step timeouts
- Cascading skips after failures
- Verification of acceptance criteria
- Cancellation (in-flight steps fail, pending steps are skipped)

Execution flow:
1. Build the StepGraph and create the isolated workspace
2. For each ready batch:
   a. Start every step (StepStarted), dispatch to its handler
   b. Record each StepExecutionResult as it completes
      (StepCompleted / StepFailed, in completion order)
   c. Cascade skips from failed steps (StepSkipped)
3. Ask the Verifier to judge the acceptance criteria
4. Build the immutable Attempt (Success / Failed(reason) / Aborted(reason))

Step-level errors never unwind the runner: they are captured on the
StepExecutionResult with an {type, message, retryable} record.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Optional, TypeVar

from chakravarti.errors import CommandFailedError, error_record
from chakravarti.events import JobEventStream
from chakravarti.graph import StepGraph
from chakravarti.handlers.base import Collaborators, StepContext, WorkspaceHandle
from chakravarti.handlers.registry import HandlerRegistry
from chakravarti.schemas import (
    Attempt,
    AttemptResult,
    EventType,
    ExecutionStatus,
    JobConfig,
    Plan,
    Step,
    StepExecutionResult,
    StepKind,
    Verdict,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCELLED = "cancelled"


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class AttemptRunner:
    """
    Runs a single attempt.

    A runner instance is single-use: create one per attempt so cancel()
    only ever affects that attempt.

    Usage:
        runner = AttemptRunner(collaborators, config, events)
        attempt = await runner.run(plan, number=1)
    """

    def __init__(
        self,
        collaborators: Collaborators,
        config: Optional[JobConfig] = None,
        events: Optional[JobEventStream] = None,
        handlers: Optional[HandlerRegistry] = None,
    ):
        """
        Initialize the runner.

        Args:
            collaborators: Verifier and git collaborators (and the model and
                sandbox ones, when no handler registry is given)
            config: Job configuration (timeouts, concurrency, base branch)
            events: Event stream of the owning job
            handlers: Handler registry; defaults to one wired to collaborators
        """
        self._collaborators = collaborators
        self._config = config or JobConfig()
        self._events = events or JobEventStream("-")
        self._handlers = handlers or HandlerRegistry.create_default(collaborators)
        self._tasks: set[asyncio.Task] = set()
        self._cancel_reason: Optional[str] = None
        self._graph: Optional[StepGraph] = None
        self._results: list[StepExecutionResult] = []
        self._attempt_number = 1

    @property
    def cancelled(self) -> bool:
        return self._cancel_reason is not None

    @property
    def graph(self) -> Optional[StepGraph]:
        return self._graph

    def cancel(self, reason: str = CANCELLED) -> None:
        """
        Cancel the attempt.

        In-flight step tasks (and a running verifier call) receive
        asyncio.CancelledError; run() then skips pending steps and returns an
        Aborted attempt. Calling cancel() more than once keeps the first reason.
        """
        if self._cancel_reason is None:
            self._cancel_reason = reason
            logger.info("Cancelling attempt %d: %s", self._attempt_number, reason)
        for task in list(self._tasks):
            task.cancel()

    async def run(
        self,
        plan: Plan,
        number: int = 1,
        on_verifying: Optional[Callable[[], None]] = None,
    ) -> Attempt:
        """
        Execute a plan.

        Args:
            plan: The plan to execute
            number: Attempt number within the job
            on_verifying: Called once, right before the verifier is invoked

        Returns:
            The finalized Attempt

        Raises:
            PlanValidationError: The plan's steps do not form a valid DAG
        """
        self._attempt_number = number
        self._results = []
        graph = StepGraph.build(plan.steps)
        self._graph = graph

        started_at = _utcnow()
        spec = plan.context.spec
        context = StepContext(spec=spec, plan=plan, config=self._config, attempt_number=number)
        verdict: Optional[Verdict] = None
        attempt_error: Optional[dict[str, Any]] = None
        workspace: Optional[WorkspaceHandle] = None
        semaphore = asyncio.Semaphore(self._config.max_in_flight)

        try:
            try:
                workspace = await self._cancellable(
                    self._collaborators.git.create_isolated_workspace(self._config.base_branch)
                )
                context.workspace = workspace
            except asyncio.CancelledError:
                if not self.cancelled:
                    raise
            except Exception as e:
                logger.error("Attempt %d: workspace creation failed: %s", number, e)
                attempt_error = error_record(e)

            if attempt_error is None and not self.cancelled:
                for batch in graph.execution_order():
                    logger.debug("Attempt %d: batch %s", number, [s.id for s in batch])
                    # A step task cancelled before it started finishes as
                    # a CancelledError result and stays Pending
                    outcomes = await asyncio.gather(*(
                        self._track(self._run_step(step, context, semaphore)) for step in batch
                    ), return_exceptions=True)
                    for outcome in outcomes:
                        if isinstance(outcome, Exception):
                            raise outcome
                    self._skip(graph.cascade_skips())
                    if self.cancelled:
                        break

            if self.cancelled or attempt_error is not None:
                self._skip(graph.skip_pending(self._cancel_reason or "attempt failed"))
            else:
                if on_verifying is not None:
                    on_verifying()
                try:
                    verdict = await self._cancellable(self._collaborators.verifier.verify(
                        spec.acceptance, dict(context.outputs)
                    ))
                except asyncio.CancelledError:
                    if not self.cancelled:
                        raise
                except Exception as e:
                    logger.error("Attempt %d: verifier failed: %s", number, e)
                    attempt_error = error_record(e)
        finally:
            if workspace is not None:
                await self._cleanup(workspace)

        result = self._result(attempt_error, verdict)
        diff = None
        for step in plan.steps:
            if step.kind == StepKind.COMMIT and step.id in context.outputs:
                diff = context.outputs[step.id].get("diff")

        attempt = Attempt(
            number=number,
            plan=plan,
            result=result,
            started_at=started_at,
            completed_at=_utcnow(),
            step_results=tuple(self._results),
            verdict=verdict,
            diff=diff,
            error=attempt_error,
        )
        logger.info("Attempt %d finished: %s (%dms)", number, result, attempt.duration_ms)
        return attempt

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    async def _run_step(self, step: Step, context: StepContext, semaphore: asyncio.Semaphore) -> None:
        try:
            async with semaphore:
                if self.cancelled:
                    return
                await self._execute_step(step, context)
        except asyncio.CancelledError:
            # A step cancelled while waiting for a slot never started and
            # stays Pending until skip_pending().
            if not self.cancelled:
                raise

    async def _execute_step(self, step: Step, context: StepContext) -> None:
        graph = self._graph
        assert graph is not None
        graph.mark_running(step.id)
        self._events.emit(EventType.STEP_STARTED, step_id=step.id, attempt=self._attempt_number, kind=step.kind.value)

        timeout = step.timeout_s or self._config.step_timeout_s
        started = time.monotonic()
        try:
            output = await asyncio.wait_for(self._handlers.dispatch(step, context), timeout=timeout)
        except asyncio.TimeoutError:
            self._fail(step, started, ExecutionStatus.TIMEOUT, "timeout",
                       error={"type": "StepTimeout", "message": f"timed out after {timeout}s", "retryable": True})
        except asyncio.CancelledError:
            reason = self._cancel_reason or CANCELLED
            self._fail(step, started, ExecutionStatus.FAILED, reason,
                       error={"type": "Cancelled", "message": reason, "retryable": False})
            if not self.cancelled:
                raise
        except CommandFailedError as e:
            self._fail(step, started, ExecutionStatus.FAILED, str(e), error=error_record(e),
                       stdout=e.stdout, stderr=e.stderr, outputs={"exit_code": str(e.exit_code)})
        except Exception as e:
            logger.warning("Step %s failed: %s: %s", step.id, type(e).__name__, e)
            self._fail(step, started, ExecutionStatus.FAILED, str(e) or type(e).__name__,
                       error=error_record(e))
        else:
            graph.mark_completed(step.id)
            context.outputs[step.id] = dict(output.outputs)
            duration_ms = _elapsed_ms(started)
            self._results.append(StepExecutionResult(
                step_id=step.id,
                status=ExecutionStatus.SUCCESS,
                outputs=dict(output.outputs),
                stdout=output.stdout,
                stderr=output.stderr,
                duration_ms=duration_ms,
            ))
            self._events.emit(EventType.STEP_COMPLETED, step_id=step.id, attempt=self._attempt_number,
                              duration_ms=duration_ms)

    def _fail(
        self,
        step: Step,
        started: float,
        status: ExecutionStatus,
        reason: str,
        error: dict[str, Any],
        stdout: str = "",
        stderr: Optional[str] = None,
        outputs: Optional[dict[str, str]] = None,
    ) -> None:
        assert self._graph is not None
        self._graph.mark_failed(step.id, reason)
        self._results.append(StepExecutionResult(
            step_id=step.id,
            status=status,
            outputs=outputs or {},
            stdout=stdout,
            stderr=reason if stderr is None else stderr,
            duration_ms=_elapsed_ms(started),
            error=error,
        ))
        self._events.emit(EventType.STEP_FAILED, step_id=step.id, attempt=self._attempt_number,
                          reason=reason, retryable=error.get("retryable"))

    def _skip(self, nodes) -> None:
        for node in nodes:
            self._results.append(StepExecutionResult(
                step_id=node.id,
                status=ExecutionStatus.SKIPPED,
                stderr=node.reason or "",
            ))
            self._events.emit(EventType.STEP_SKIPPED, step_id=node.id, attempt=self._attempt_number,
                              reason=node.reason)

    # -------------------------------------------------------------------------
    # Outcome
    # -------------------------------------------------------------------------

    def _result(self, attempt_error: Optional[dict[str, Any]], verdict: Optional[Verdict]) -> AttemptResult:
        """Summarize the first blocking cause."""
        if self.cancelled:
            return AttemptResult.aborted(self._cancel_reason or CANCELLED)
        if attempt_error is not None:
            return AttemptResult.failed(attempt_error["message"])

        for r in self._results:
            if r.status in (ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT):
                reason = "timeout" if r.status == ExecutionStatus.TIMEOUT else (r.error or {}).get("message", "failed")
                return AttemptResult.failed(f"step `{r.step_id}` failed: {reason}")

        if verdict is None:
            return AttemptResult.failed("verification did not run")
        if verdict.unsatisfiable:
            return AttemptResult.failed("acceptance criteria unsatisfiable")
        if not verdict.passed:
            return AttemptResult.failed(f"unmet acceptance criteria: {'; '.join(verdict.unmet)}")
        return AttemptResult.success()

    # -------------------------------------------------------------------------
    # Task bookkeeping
    # -------------------------------------------------------------------------

    def _track(self, coro: Awaitable[T]) -> "asyncio.Task[T]":
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if self.cancelled:
            task.cancel()
        return task

    async def _cancellable(self, coro: Awaitable[T]) -> T:
        """Await a collaborator call that cancel() can interrupt."""
        return await self._track(coro)

    async def _cleanup(self, workspace: WorkspaceHandle) -> None:
        try:
            await self._collaborators.git.cleanup(workspace)
        except Exception as e:
            logger.warning("Workspace cleanup failed for %s: %s", workspace.path, e)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
