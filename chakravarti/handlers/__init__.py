"""
Handlers module for chakravarti step execution.

This module provides the collaborator contracts and the handler layer that
enforces clean boundaries:
- chakravarti orchestrates (Spec -> Plan -> Attempt -> Job)
- handlers dispatch steps to the collaborator for their kind

Usage:
    from chakravarti.handlers import Collaborators, HandlerRegistry

    # Registry wired to real collaborators
    registry = HandlerRegistry.create_default(collaborators)

    # Or dry-run collaborators that never leave the process
    registry = HandlerRegistry.create_default(Collaborators.noop())
"""

from chakravarti.handlers.base import (
    Collaborators,
    DefaultPlanner,
    GitClient,
    ModelClient,
    ModelRequest,
    ModelResponse,
    NoOpGitClient,
    NoOpModelClient,
    NoOpSandbox,
    NoOpVerifier,
    Planner,
    Sandbox,
    SandboxResult,
    StepContext,
    StepHandler,
    StepOutput,
    Verifier,
    WorkspaceHandle,
)
from chakravarti.handlers.registry import HandlerRegistry
from chakravarti.handlers.model import ModelHandler
from chakravarti.handlers.sandbox import SandboxHandler
from chakravarti.handlers.git import CommitHandler

__all__ = [
    # Contracts
    "Planner",
    "ModelClient",
    "ModelRequest",
    "ModelResponse",
    "Sandbox",
    "SandboxResult",
    "Verifier",
    "GitClient",
    "WorkspaceHandle",
    "Collaborators",
    # Handlers
    "StepContext",
    "StepHandler",
    "StepOutput",
    "HandlerRegistry",
    "ModelHandler",
    "SandboxHandler",
    "CommitHandler",
    # Dry-run
    "DefaultPlanner",
    "NoOpModelClient",
    "NoOpSandbox",
    "NoOpVerifier",
    "NoOpGitClient",
]
