"""
Completion poller and engine lease.

The poller blocks until the engine reports a submission finished or the
job's timeout elapses. The timeout spans the whole wait, not a single poll.
On timeout the engine is not asked to cancel anything: genorch stops
waiting and the computation may keep running unobserved.

The engine executes one submission queue at a time. EngineLease makes that
explicit: a job must hold the lease from submission until it stops polling.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from genorch.engine.client import EngineError
from genorch.engine.completion import CompletionCheck
from genorch.errors import GenorchError, PollTimeout

logger = logging.getLogger(__name__)


class EngineBusy(GenorchError):
    """The engine lease is held by another job."""
    pass


class EngineLease:
    """Single-owner handle on the shared engine."""

    def __init__(self):
        self._lock = threading.Lock()
        self.owner: Optional[str] = None

    @property
    def held(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, job_id: str) -> Iterator["EngineLease"]:
        """
        Hold the engine for job_id for the duration of the block.

        Raises:
            EngineBusy: If another job holds the lease
        """
        if not self._lock.acquire(blocking=False):
            raise EngineBusy(f"engine is busy with job {self.owner}; cannot start job {job_id}")
        self.owner = job_id
        try:
            yield self
        finally:
            self.owner = None
            self._lock.release()


@dataclass(frozen=True)
class Completed:
    """Successful wait outcome."""
    handle: str
    elapsed: float
    polls: int


class CompletionPoller:
    """Polls a CompletionCheck at a fixed interval until done or timed out."""

    def __init__(
        self,
        check: CompletionCheck,
        interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.check = check
        self.interval = interval
        self.clock = clock
        self.sleep = sleep

    def await_completion(self, handle: str, timeout: float, job_id: Optional[str] = None) -> Completed:
        """
        Wait for handle to complete.

        Status read failures are logged and treated as "not finished yet";
        only the timeout ends an unsuccessful wait.

        Raises:
            PollTimeout: If the engine did not report completion within timeout
        """
        start = self.clock()
        polls = 0
        while True:
            elapsed = self.clock() - start
            if elapsed >= timeout:
                raise PollTimeout(
                    f"timeout after {timeout:g}s waiting for handle {handle}",
                    job_id=job_id,
                    handle=handle,
                    timeout=timeout,
                )

            polls += 1
            try:
                if self.check.is_complete(handle):
                    logger.info(
                        f"Handle {handle} complete after {elapsed:.1f}s ({polls} polls)",
                        extra={"job_id": job_id, "stage": "poll"},
                    )
                    return Completed(handle=handle, elapsed=elapsed, polls=polls)
            except EngineError as e:
                logger.warning(f"Status check for {handle} failed: {e}", extra={"job_id": job_id, "stage": "poll"})

            self.sleep(min(self.interval, timeout - elapsed))
