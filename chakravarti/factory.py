"""
Secure loader for collaborator factories.

Real collaborators (model providers, container sandboxes, git worktrees) live
outside this package. The CLI wires them in through a factory named as
"module:function"; the function receives the ChakravartiConfig and returns a
Collaborators bundle.

Only modules listed in `allowed_factory_modules` (exact match or submodule)
may be imported.
"""

import importlib
import logging
from collections.abc import Callable, Iterable
from typing import Any

logger = logging.getLogger(__name__)


def is_allowed_module(module_path: str, allowed_modules: Iterable[str]) -> bool:
    """Check if module is in allowlist (exact match or submodule)."""
    for allowed in allowed_modules:
        if module_path == allowed or module_path.startswith(allowed + "."):
            return True
    return False


def load_factory(factory_path: str, allowed_modules: Iterable[str]) -> Callable[..., Any]:
    """Load a collaborator factory by "module:function" path.

    Args:
        factory_path: e.g. "acme.chakravarti:build_collaborators"
        allowed_modules: Module allowlist

    Returns:
        The callable factory function

    Raises:
        ValueError: If path not in allowlist or malformed
        ImportError: If module not found
        AttributeError: If function not found in module
        TypeError: If attribute is not callable
    """
    if ":" not in factory_path:
        raise ValueError(f"Factory path must be 'module:function', got: {factory_path}")

    module_path, func_name = factory_path.rsplit(":", 1)
    allowed = list(allowed_modules)

    if not is_allowed_module(module_path, allowed):
        raise ValueError(
            f"Factory module '{module_path}' not in allowlist. "
            f"Allowed: {allowed}"
        )

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ImportError(f"Cannot import factory module '{module_path}': {e}") from e

    try:
        factory = getattr(module, func_name)
    except AttributeError as e:
        raise AttributeError(
            f"Factory function '{func_name}' not found in '{module_path}': {e}"
        ) from e

    if not callable(factory):
        raise TypeError(f"{factory_path} is not callable")

    logger.debug("Loaded collaborator factory %s", factory_path)
    return factory
