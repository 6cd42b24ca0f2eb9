"""
chakravarti - Spec driven job orchestrator

Turns a Spec into a DAG of steps, executes attempts against pluggable
collaborators and replans with feedback until acceptance criteria are met.
"""

__version__ = "0.1.0"


__all__ = [
    "ChakravartiConfig",
    "load_config",
    "get_chakravarti_home",
    "Orchestrator",
    "EventBus",
]

from .config import ChakravartiConfig, load_config, get_chakravarti_home
from .events import EventBus
from .orchestrator import Orchestrator
