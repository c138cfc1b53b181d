"""
genorch.engine - submission, completion checks and polling for the generation engine.
"""

from .client import EngineClient, EngineError, build_envelope
from .completion import (
    CompletionCheck,
    HistoryCompletionCheck,
    QueueCompletionCheck,
    build_completion_check,
)
from .poller import Completed, CompletionPoller, EngineBusy, EngineLease

__all__ = [
    "EngineClient",
    "EngineError",
    "build_envelope",
    "CompletionCheck",
    "HistoryCompletionCheck",
    "QueueCompletionCheck",
    "build_completion_check",
    "Completed",
    "CompletionPoller",
    "EngineBusy",
    "EngineLease",
]
