"""
Git handler for commit steps.

Records the attempt's workspace diff as the step's `diff` output. The runner
copies it onto the Attempt.
"""

from chakravarti.errors import GitError
from chakravarti.handlers.base import GitClient, StepContext, StepHandler, StepOutput
from chakravarti.schemas import Step


class CommitHandler(StepHandler):
    """Handler for commit steps."""

    def __init__(self, git: GitClient):
        self._git = git

    @property
    def git(self) -> GitClient:
        return self._git

    async def execute(self, step: Step, context: StepContext) -> StepOutput:
        if context.workspace is None:
            raise GitError(f"Step {step.id}: no isolated workspace to commit from")

        diff = await self._git.diff(context.workspace)
        return StepOutput(
            outputs={"diff": diff, "branch": context.workspace.branch},
            stdout=diff,
        )
