"""
Sandbox handler for execute/test steps.

Runs the step's command inside the attempt's isolated workspace through the
Sandbox collaborator. Test steps without a command of their own run the
spec's verify commands, joined with `&&`.

A non-zero exit code raises CommandFailedError (retryable) carrying the
captured streams, so the failure reaches the next planning round as
feedback. Errors raised by the sandbox itself propagate unchanged.
"""

import logging
from typing import Optional

from chakravarti.errors import CommandFailedError
from chakravarti.handlers.base import (
    Sandbox,
    StepContext,
    StepHandler,
    StepOutput,
)
from chakravarti.schemas import Step, StepKind

logger = logging.getLogger(__name__)


def resolve_command(step: Step, verify_commands: tuple[str, ...]) -> Optional[str]:
    """The command a sandbox step should run, or None if there is nothing to run."""
    if step.command:
        return step.command
    if step.kind == StepKind.TEST and verify_commands:
        return " && ".join(verify_commands)
    return None


class SandboxHandler(StepHandler):
    """
    Handler for sandboxed command steps.

    Outputs:
        command: The command that ran
        exit_code: Its exit code (always "0" on success)
        stdout: Captured standard output
    """

    def __init__(self, sandbox: Sandbox, env: Optional[dict[str, str]] = None):
        self._sandbox = sandbox
        self._env = dict(env or {})

    @property
    def sandbox(self) -> Sandbox:
        return self._sandbox

    async def execute(self, step: Step, context: StepContext) -> StepOutput:
        command = resolve_command(step, context.spec.verify_commands)
        if command is None:
            logger.warning("Step %s (%s) has no command to run", step.id, step.kind.value)
            return StepOutput(outputs={"command": "", "exit_code": "0", "stdout": ""})

        timeout = step.timeout_s or context.config.step_timeout_s
        mount = context.workspace.path if context.workspace else None
        logger.debug("Step %s: executing %r", step.id, command)

        result = await self._sandbox.execute(
            command,
            workdir=context.workdir,
            mount=mount,
            env=self._env or None,
            timeout=timeout,
        )
        if not result.ok:
            raise CommandFailedError(result.exit_code, result.stdout, result.stderr)

        return StepOutput(
            outputs={"command": command, "exit_code": str(result.exit_code), "stdout": result.stdout},
            stdout=result.stdout,
            stderr=result.stderr,
        )
