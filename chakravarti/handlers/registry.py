"""
Handler Registry for dispatching steps to the appropriate handler.

The registry is a closed mapping from StepKind to StepHandler, one handler
per collaborator category:
- analyze, generate: ModelHandler (model collaborator)
- execute, test: SandboxHandler (sandbox collaborator)
- commit: CommitHandler (git collaborator)
"""

from typing import TYPE_CHECKING

from chakravarti.handlers.base import StepContext, StepHandler, StepOutput
from chakravarti.schemas import Step, StepKind

if TYPE_CHECKING:
    from chakravarti.handlers.base import Collaborators


class HandlerRegistry:
    """
    Registry for handler dispatch by step kind.

    Usage:
        registry = HandlerRegistry()
        registry.register(StepKind.TEST, SandboxHandler(sandbox))

        # Dispatch a step
        output = await registry.dispatch(step, context)

        # Or use factory with collaborators
        registry = HandlerRegistry.create_default(collaborators)
    """

    def __init__(self) -> None:
        """Initialize an empty handler registry."""
        self._handlers: dict[StepKind, StepHandler] = {}

    def register(self, kind: StepKind, handler: StepHandler) -> None:
        """
        Register a handler for a step kind.

        Args:
            kind: Step kind
            handler: Handler instance for this kind
        """
        self._handlers[StepKind(kind)] = handler

    def get(self, kind: StepKind) -> StepHandler:
        """
        Get handler for a step kind.

        Raises:
            KeyError: If no handler registered for this kind
        """
        if kind not in self._handlers:
            registered = [k.value for k in self._handlers]
            raise KeyError(
                f"No handler registered for step kind: {kind.value}. "
                f"Registered: {registered}"
            )
        return self._handlers[kind]

    def has(self, kind: StepKind) -> bool:
        return kind in self._handlers

    def list_kinds(self) -> list[StepKind]:
        return list(self._handlers.keys())

    async def dispatch(self, step: Step, context: StepContext) -> StepOutput:
        """
        Dispatch a step to the handler for its kind.

        Raises:
            KeyError: If no handler registered for the step's kind
        """
        return await self.get(step.kind).execute(step, context)

    @classmethod
    def create_default(cls, collaborators: "Collaborators") -> "HandlerRegistry":
        """
        Create a registry wired to a set of collaborators.

        Args:
            collaborators: Model, sandbox and git collaborators

        Returns:
            Registry covering every StepKind
        """
        from chakravarti.handlers.git import CommitHandler
        from chakravarti.handlers.model import ModelHandler
        from chakravarti.handlers.sandbox import SandboxHandler

        registry = cls()

        model = ModelHandler(collaborators.model)
        registry.register(StepKind.ANALYZE, model)
        registry.register(StepKind.GENERATE, model)

        sandbox = SandboxHandler(collaborators.sandbox)
        registry.register(StepKind.EXECUTE, sandbox)
        registry.register(StepKind.TEST, sandbox)

        registry.register(StepKind.COMMIT, CommitHandler(collaborators.git))
        return registry
