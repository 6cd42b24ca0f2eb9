"""
Collaborator contracts, step handler protocol and dry-run implementations.

The orchestration engine performs no network I/O, process spawning or git
operations itself. It reaches the outside world through five collaborators:

- Planner: Spec (+ feedback) -> Plan
- ModelClient: chat completion for analyze/generate steps
- Sandbox: isolated command execution for execute/test steps
- Verifier: judges acceptance criteria against accumulated outputs
- GitClient: isolated workspace per attempt, diff, cleanup

Step handlers sit between the AttemptRunner and the collaborators: one
handler per collaborator category, selected by StepKind through the
HandlerRegistry.

Collaborator results are success-only; failures are raised as the error
classes in chakravarti.errors.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from chakravarti.errors import InvalidSpecError, PlanInvalidSpecError
from chakravarti.schemas import (
    Feedback,
    JobConfig,
    Plan,
    PlanContext,
    Spec,
    Step,
    StepKind,
    Verdict,
)

logger = logging.getLogger(__name__)


# =============================================================================
# COLLABORATOR VALUE TYPES
# =============================================================================


@dataclass(frozen=True)
class ModelRequest:
    """A chat completion request."""
    model: str
    messages: list[dict[str, str]]
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


@dataclass(frozen=True)
class ModelResponse:
    """A chat completion response."""
    content: str
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class SandboxResult:
    """Outcome of a command run inside the sandbox."""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class WorkspaceHandle:
    """An isolated checkout (e.g. a git worktree) for one attempt."""
    path: str
    branch: str
    base_branch: str = "main"


# =============================================================================
# COLLABORATOR CONTRACTS
# =============================================================================


class Planner(ABC):
    """Produces a Plan for a Spec, optionally informed by prior feedback."""

    @abstractmethod
    async def plan(self, spec: Spec, context: Optional[PlanContext] = None) -> Plan:
        """
        Generate a plan.

        Raises:
            PlanError: InvalidSpec, Unsatisfiable or Cyclic
        """
        pass


class ModelClient(ABC):
    """Model completion transport."""

    @abstractmethod
    async def complete(self, request: ModelRequest) -> ModelResponse:
        """
        Send a completion request.

        Raises:
            ModelError: Network/RateLimited/Timeout are retryable, the rest fatal
        """
        pass


class Sandbox(ABC):
    """Isolated command execution."""

    @abstractmethod
    async def execute(
        self,
        command: str,
        workdir: str,
        mount: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> SandboxResult:
        """
        Run a shell command.

        A non-zero exit code is returned, not raised.

        Raises:
            SandboxError: RuntimeNotAvailable/ContainerStartFailed/Timeout are
                retryable; CommandNotAllowed and the rest are fatal
        """
        pass


class Verifier(ABC):
    """Judges acceptance criteria."""

    @abstractmethod
    async def verify(
        self,
        acceptance: tuple[str, ...],
        outputs: dict[str, dict[str, str]],
    ) -> Verdict:
        """
        Evaluate criteria against accumulated step outputs.

        Args:
            acceptance: Acceptance criteria in spec order
            outputs: {step_id: outputs} for steps that produced results
        """
        pass


class GitClient(ABC):
    """Workspace isolation and diffing."""

    @abstractmethod
    async def create_isolated_workspace(self, base_branch: str) -> WorkspaceHandle:
        pass

    @abstractmethod
    async def diff(self, handle: WorkspaceHandle) -> str:
        pass

    @abstractmethod
    async def cleanup(self, handle: WorkspaceHandle) -> None:
        pass


# =============================================================================
# STEP HANDLERS
# =============================================================================


@dataclass
class StepContext:
    """
    Everything a step handler may read while executing a step.

    Attributes:
        spec: The job's spec
        plan: The plan being executed
        config: Job configuration (timeouts, model selection)
        attempt_number: Current attempt number
        workspace: Isolated workspace for this attempt, if one was created
        outputs: Outputs of steps completed so far, keyed by step id
    """
    spec: Spec
    plan: Plan
    config: JobConfig
    attempt_number: int = 1
    workspace: Optional[WorkspaceHandle] = None
    outputs: dict[str, dict[str, str]] = field(default_factory=dict)

    @property
    def feedback(self) -> Optional[Feedback]:
        return self.plan.context.feedback

    @property
    def workdir(self) -> str:
        return self.workspace.path if self.workspace else "."


@dataclass(frozen=True)
class StepOutput:
    """What a handler returns for a successful step."""
    outputs: dict[str, str] = field(default_factory=dict)
    stdout: str = ""
    stderr: str = ""


class StepHandler(ABC):
    """
    Abstract base class for step handlers.

    Handlers receive a Step and its StepContext and perform the step through
    their collaborator. Failures are raised; the AttemptRunner records them.
    """

    @abstractmethod
    async def execute(self, step: Step, context: StepContext) -> StepOutput:
        """
        Execute a step.

        Returns:
            StepOutput with named outputs and captured streams

        Raises:
            Exception: If execution fails
        """
        pass


# =============================================================================
# DRY-RUN COLLABORATORS
# =============================================================================


class NoOpModelClient(ModelClient):
    """Echoes the request instead of calling a provider."""

    async def complete(self, request: ModelRequest) -> ModelResponse:
        return ModelResponse(
            content=f"[dry-run] {request.model}: {len(request.messages)} message(s)",
            finish_reason="stop",
        )


class NoOpSandbox(Sandbox):
    """Pretends every command succeeds."""

    async def execute(self, command, workdir, mount=None, env=None, timeout=None) -> SandboxResult:
        logger.debug("[dry-run] would execute %r in %s", command, workdir)
        return SandboxResult(stdout=f"[dry-run] {command}\n")


class NoOpVerifier(Verifier):
    """Passes every criterion."""

    async def verify(self, acceptance, outputs) -> Verdict:
        return Verdict.from_flags(acceptance, True)


class NoOpGitClient(GitClient):
    """Hands out the current directory as the workspace and never diffs."""

    async def create_isolated_workspace(self, base_branch: str) -> WorkspaceHandle:
        return WorkspaceHandle(path=".", branch=base_branch, base_branch=base_branch)

    async def diff(self, handle: WorkspaceHandle) -> str:
        return ""

    async def cleanup(self, handle: WorkspaceHandle) -> None:
        return None


# =============================================================================
# DEFAULT PLANNER
# =============================================================================


# Marker file -> test command, checked in order.
TEST_COMMANDS: list[tuple[str, str]] = [
    ("Cargo.toml", "cargo test"),
    ("package.json", "npm test"),
    ("pyproject.toml", "pytest"),
    ("setup.py", "pytest"),
    ("go.mod", "go test ./..."),
    ("Makefile", "make test"),
]


def detect_test_command(repo_root: Path | str) -> Optional[str]:
    """Guess the project's test command from marker files in repo_root."""
    root = Path(repo_root)
    for marker, command in TEST_COMMANDS:
        if (root / marker).exists():
            return command
    return None


class DefaultPlanner(Planner):
    """
    Standard four-step plan: analyze -> generate -> test -> commit.

    The test step runs nothing of its own: the runner falls back to the
    spec's verify commands. When the spec has none, the repository's test
    command (detected from marker files) is used instead.
    """

    def __init__(self, repo_root: Optional[Path | str] = None):
        self.repo_root = Path(repo_root) if repo_root else None

    async def plan(self, spec: Spec, context: Optional[PlanContext] = None) -> Plan:
        try:
            spec.validate()
        except InvalidSpecError as e:
            raise PlanInvalidSpecError(str(e)) from e

        context = context or PlanContext(spec=spec)
        test_command = None
        if not spec.verify_commands and self.repo_root is not None:
            test_command = detect_test_command(self.repo_root)

        steps = [
            Step("analyze", "Analyze codebase", StepKind.ANALYZE),
            Step("generate", "Generate changes", StepKind.GENERATE, depends_on=("analyze",)),
            Step("test", "Run tests", StepKind.TEST, depends_on=("generate",), command=test_command),
            Step("commit", "Record changes", StepKind.COMMIT, depends_on=("test",)),
        ]
        plan = Plan.new(context, steps)
        logger.info(
            "Generated plan %s for spec %s (%d steps, replan=%s)",
            plan.id, spec.id, len(steps), context.is_replan,
        )
        return plan


# =============================================================================
# COLLABORATOR BUNDLE
# =============================================================================


@dataclass
class Collaborators:
    """The set of collaborators a job runs against."""
    planner: Planner
    model: ModelClient
    sandbox: Sandbox
    verifier: Verifier
    git: GitClient

    @classmethod
    def noop(cls, planner: Optional[Planner] = None) -> "Collaborators":
        """Dry-run collaborators: nothing leaves the process."""
        return cls(
            planner=planner or DefaultPlanner(),
            model=NoOpModelClient(),
            sandbox=NoOpSandbox(),
            verifier=NoOpVerifier(),
            git=NoOpGitClient(),
        )
