"""
Error classes for chakravarti execution.

These error types enable retry classification at attempt boundaries:
- TransientError: Safe to retry (rate limits, network issues, runtime hiccups)
- PermanentError: Do not retry (invalid spec, cyclic plan, policy violations)

Collaborators (model clients, sandboxes, git, planners) raise these errors to
signal retry behavior. The attempt runner catches them at the step boundary
and records them on the StepExecutionResult; the retry policy reads that
record to decide between replanning and aborting.

Error handling contract:
- Collaborator results are success-only
- Errors are exceptions, not values
- Step-level errors never unwind the runner
"""

from typing import Optional


class ChakravartiError(Exception):
    """Base exception for chakravarti."""
    pass


class TransientError(ChakravartiError):
    """
    Transient error - safe to retry.

    Examples:
    - Rate limit exceeded
    - Network timeout
    - Container runtime temporarily unavailable

    The orchestrator retries at attempt granularity (fresh plan, fresh
    attempt) while attempts remain.
    """
    pass


class PermanentError(ChakravartiError):
    """
    Permanent error - do not retry.

    Examples:
    - Invalid spec
    - Cyclic plan
    - Command rejected by the sandbox allowlist

    The orchestrator fails the job immediately, regardless of remaining
    attempts.
    """
    pass


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception raised by a collaborator.

    TransientError subclasses and asyncio/builtin timeouts are retryable.
    Everything else, including unknown exception types, is fatal.
    """
    if isinstance(exc, TransientError):
        return True
    if isinstance(exc, TimeoutError):
        return True
    return False


def error_record(exc: BaseException) -> dict:
    """Serializable {type, message, retryable} record of an exception."""
    return {
        "type": type(exc).__name__,
        "message": str(exc) or type(exc).__name__,
        "retryable": is_retryable(exc),
    }


# =============================================================================
# VALIDATION
# =============================================================================


class InvalidSpecError(PermanentError):
    """Raised when a Spec fails validation."""
    pass


class SpecNotFoundError(ChakravartiError):
    """Raised when a spec definition is not found."""
    pass


class PlanValidationError(PermanentError):
    """Raised when a plan references unknown or duplicate step ids."""
    pass


class CycleError(PlanValidationError):
    """Raised when a plan's dependency relation contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class InvalidTransitionError(ChakravartiError):
    """Raised when a step or job state transition is not allowed."""

    def __init__(self, subject: str, from_state: str, to_state: str):
        self.subject = subject
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid state transition for {subject}: {from_state} -> {to_state}")


# =============================================================================
# PLANNER
# =============================================================================


class PlanError(PermanentError):
    """Raised by a Planner when no plan can be produced."""
    pass


class PlanInvalidSpecError(PlanError):
    """Spec has malformed goal or constraints."""
    pass


class PlanUnsatisfiableError(PlanError):
    """Acceptance criteria are unreachable."""
    pass


class PlanCyclicError(PlanError):
    """Planner produced (or detected) a cyclic step graph."""
    pass


# =============================================================================
# MODEL COLLABORATOR
# =============================================================================


class ModelError(ChakravartiError):
    """Base class for model collaborator failures."""
    pass


class ModelConfigError(ModelError, PermanentError):
    pass


class ModelNetworkError(ModelError, TransientError):
    pass


class ModelApiError(ModelError, PermanentError):
    """Provider returned an error status."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"API error ({status}): {message}")


class ModelParseError(ModelError, PermanentError):
    pass


class ModelRateLimitedError(ModelError, TransientError):
    """Provider rate limit hit."""

    def __init__(self, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded, retry after {retry_after}s")


class ModelNotFoundError(ModelError, PermanentError):
    pass


class ModelTimeoutError(ModelError, TransientError):
    pass


# =============================================================================
# SANDBOX COLLABORATOR
# =============================================================================


class SandboxError(ChakravartiError):
    """Base class for sandbox collaborator failures."""
    pass


class RuntimeNotAvailableError(SandboxError, TransientError):
    pass


class ImagePullFailedError(SandboxError, PermanentError):
    pass


class ContainerCreateFailedError(SandboxError, PermanentError):
    pass


class ContainerStartFailedError(SandboxError, TransientError):
    pass


class ExecutionFailedError(SandboxError, PermanentError):
    pass


class CommandNotAllowedError(SandboxError, PermanentError):
    """Command rejected by the sandbox allowlist. Never retried."""

    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Command not allowed: {command}")


class SandboxTimeoutError(SandboxError, TransientError):
    pass


class ContainerError(SandboxError, PermanentError):
    pass


class CommandFailedError(TransientError):
    """A sandboxed command ran but exited non-zero (e.g. failing tests)."""

    def __init__(self, exit_code: int, stdout: str = "", stderr: str = ""):
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"exit code {exit_code}")


# =============================================================================
# PROMPTS
# =============================================================================


class PromptRenderError(PermanentError):
    """Raised when a step prompt template fails to render."""
    pass


# =============================================================================
# GIT COLLABORATOR
# =============================================================================


class GitError(PermanentError):
    """Raised by the git collaborator (workspace, diff, cleanup)."""
    pass
