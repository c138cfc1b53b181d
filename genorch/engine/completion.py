"""
Completion checks - one capability over two engine status shapes.

- history: GET /history/{handle} is keyed by handle once the work finished
- queue:   GET /queue lists running and pending entries; the handle is done
           once it no longer appears in either list

Selected by the `completion_check` config value.
"""

from typing import Any, Protocol, runtime_checkable

from genorch.engine.client import EngineClient


@runtime_checkable
class CompletionCheck(Protocol):
    """Answers whether the engine has finished a submission."""

    def is_complete(self, handle: str) -> bool:
        ...


class HistoryCompletionCheck:
    """Complete once the handle key appears in its history record."""

    def __init__(self, client: EngineClient):
        self.client = client

    def is_complete(self, handle: str) -> bool:
        history = self.client.get_history(handle)
        return handle in history


def _entry_handle(entry: Any) -> Any:
    # Queue entries are [number, handle, prompt, extra, outputs] lists
    if isinstance(entry, (list, tuple)) and len(entry) > 1:
        return entry[1]
    if isinstance(entry, dict):
        return entry.get("prompt_id")
    return None


class QueueCompletionCheck:
    """Complete once the handle is neither running nor pending."""

    def __init__(self, client: EngineClient):
        self.client = client

    def is_complete(self, handle: str) -> bool:
        queue = self.client.get_queue()
        for key in ("queue_running", "queue_pending"):
            for entry in queue.get(key) or []:
                if _entry_handle(entry) == handle:
                    return False
        return True


COMPLETION_CHECKS = {
    "history": HistoryCompletionCheck,
    "queue": QueueCompletionCheck,
}


def build_completion_check(kind: str, client: EngineClient) -> CompletionCheck:
    """Build the completion check named by kind."""
    try:
        check_cls = COMPLETION_CHECKS[kind]
    except KeyError:
        raise ValueError(f"Unknown completion check: {kind!r} (expected one of {sorted(COMPLETION_CHECKS)})")
    return check_cls(client)
