import asyncio
from typing import Optional

import pytest

from chakravarti.handlers.base import (
    Collaborators,
    GitClient,
    ModelClient,
    NoOpModelClient,
    Planner,
    Sandbox,
    SandboxResult,
    Verifier,
    WorkspaceHandle,
)
from chakravarti.schemas import Plan, PlanContext, Spec, Step, StepKind, Verdict, VerifyConfig


# -----------------------------------------------------------------------------
# Fake collaborators
# -----------------------------------------------------------------------------


class StaticPlanner(Planner):
    """Returns the same steps every time (or raises `error`)."""

    def __init__(self, steps: list[Step], error: Optional[Exception] = None):
        self.steps = steps
        self.error = error
        self.contexts: list[PlanContext] = []

    async def plan(self, spec, context=None):
        context = context or PlanContext(spec=spec)
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        return Plan.new(context, self.steps)


class ScriptedSandbox(Sandbox):
    """
    Sandbox with queued outcomes per command.

    Each call pops the next outcome for the command: a SandboxResult is
    returned, an exception is raised. Commands without queued outcomes
    succeed. `delay` makes every call sleep first.
    """

    def __init__(self, outcomes: Optional[dict] = None, delay: float = 0.0):
        self.outcomes = {cmd: list(seq) for cmd, seq in (outcomes or {}).items()}
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def execute(self, command, workdir, mount=None, env=None, timeout=None):
        self.calls.append(command)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            queue = self.outcomes.get(command)
            outcome = queue.pop(0) if queue else SandboxResult(stdout=f"ran {command}")
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.active -= 1


class FailingModel(ModelClient):
    """Raises `error` on every completion request."""

    def __init__(self, error: Exception):
        self.error = error
        self.requests = []

    async def complete(self, request):
        self.requests.append(request)
        raise self.error


class ScriptedVerifier(Verifier):
    """Returns queued verdicts; passes every criterion once the queue is empty."""

    def __init__(self, verdicts: Optional[list] = None):
        self.verdicts = list(verdicts or [])
        self.calls: list[dict] = []

    async def verify(self, acceptance, outputs):
        self.calls.append(dict(outputs))
        if self.verdicts:
            verdict = self.verdicts.pop(0)
            if isinstance(verdict, BaseException):
                raise verdict
            return verdict
        return Verdict.from_flags(acceptance, True)


class RecordingGit(GitClient):
    """Tracks created and cleaned up workspaces."""

    def __init__(self, diff_text: str = "diff --git a/x b/x", create_error: Optional[Exception] = None):
        self.diff_text = diff_text
        self.create_error = create_error
        self.created: list[WorkspaceHandle] = []
        self.cleaned: list[WorkspaceHandle] = []

    async def create_isolated_workspace(self, base_branch):
        if self.create_error is not None:
            raise self.create_error
        handle = WorkspaceHandle(
            path=f"/tmp/ws-{len(self.created) + 1}",
            branch=f"attempt-{len(self.created) + 1}",
            base_branch=base_branch,
        )
        self.created.append(handle)
        return handle

    async def diff(self, handle):
        return self.diff_text

    async def cleanup(self, handle):
        self.cleaned.append(handle)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def spec():
    return Spec(
        id="add_login",
        goal="Add a login page",
        constraints=("Do not touch the public API",),
        acceptance=("Login form renders", "Invalid credentials show an error"),
        verify=VerifyConfig(image="python:3.12", commands=("pytest -q",)),
    )


@pytest.fixture
def linear_steps():
    """analyze -> generate -> test"""
    return [
        Step("analyze", "Analyze codebase", StepKind.ANALYZE),
        Step("generate", "Generate changes", StepKind.GENERATE, depends_on=("analyze",)),
        Step("test", "Run tests", StepKind.TEST, depends_on=("generate",), command="pytest -q"),
    ]


@pytest.fixture
def make_collaborators():
    """Build a Collaborators bundle from fakes; unspecified parts are defaults."""

    def _make(steps, sandbox=None, verifier=None, git=None, planner=None, model=None):
        return Collaborators(
            planner=planner or StaticPlanner(steps),
            model=model or NoOpModelClient(),
            sandbox=sandbox or ScriptedSandbox(),
            verifier=verifier or ScriptedVerifier(),
            git=git or RecordingGit(),
        )

    return _make
