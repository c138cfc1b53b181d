"""
genorch - Job orchestrator for a queue-based generation engine

Validates each job's guardrails, fetches its inputs, submits the work
specification to the engine, waits for completion, and packages and
publishes the outputs. Jobs run one at a time, singly or from a batch document.
"""

__version__ = "0.1.0"


__all__ = ["GenorchConfig", "load_config", "get_genorch_home"]

from .config import GenorchConfig, load_config, get_genorch_home
