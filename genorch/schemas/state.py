"""
Job lifecycle state machine.

Happy path:
    pending -> validated -> artifacts_ready -> submitted -> polling
            -> completed -> packaged -> published -> done

Each in-progress state has exactly one failure exit. All failure states
are terminal. JobRecord is owned by whoever drives the job and is the only
mutable part of a job's lifecycle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from genorch.errors import (
    FetchError,
    GenorchError,
    PackagingError,
    PolicyViolation,
    PollTimeout,
    PublishError,
    StageError,
    SubmissionError,
)
from genorch.schemas.job import Job


class JobState(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    ARTIFACTS_READY = "artifacts_ready"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    PACKAGED = "packaged"
    PUBLISHED = "published"
    DONE = "done"
    # Failure states
    REJECTED = "rejected"
    FETCH_FAILED = "fetch_failed"
    SUBMIT_FAILED = "submit_failed"
    TIMED_OUT = "timed_out"
    PACKAGE_FAILED = "package_failed"
    PUBLISH_FAILED = "publish_failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_failure(self) -> bool:
        return self in FAILURE_STATES


FAILURE_STATES = frozenset({
    JobState.REJECTED,
    JobState.FETCH_FAILED,
    JobState.SUBMIT_FAILED,
    JobState.TIMED_OUT,
    JobState.PACKAGE_FAILED,
    JobState.PUBLISH_FAILED,
})

TERMINAL_STATES = FAILURE_STATES | {JobState.DONE}

TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.VALIDATED, JobState.REJECTED}),
    JobState.VALIDATED: frozenset({JobState.ARTIFACTS_READY, JobState.FETCH_FAILED}),
    JobState.ARTIFACTS_READY: frozenset({JobState.SUBMITTED, JobState.SUBMIT_FAILED}),
    JobState.SUBMITTED: frozenset({JobState.POLLING}),
    JobState.POLLING: frozenset({JobState.COMPLETED, JobState.TIMED_OUT}),
    JobState.COMPLETED: frozenset({JobState.PACKAGED, JobState.PACKAGE_FAILED}),
    JobState.PACKAGED: frozenset({JobState.PUBLISHED, JobState.PUBLISH_FAILED}),
    JobState.PUBLISHED: frozenset({JobState.DONE}),
}

# Stage error -> terminal state it leads to
FAILURE_FOR_ERROR: dict[type[StageError], JobState] = {
    PolicyViolation: JobState.REJECTED,
    FetchError: JobState.FETCH_FAILED,
    SubmissionError: JobState.SUBMIT_FAILED,
    PollTimeout: JobState.TIMED_OUT,
    PackagingError: JobState.PACKAGE_FAILED,
    PublishError: JobState.PUBLISH_FAILED,
}


class InvalidTransition(GenorchError):
    """A state change not allowed by the lifecycle table."""
    pass


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class JobRecord:
    """
    Runtime record of one job moving through the lifecycle.

    Attributes:
        job: The immutable job
        state: Current lifecycle state
        handle: Submission handle, once the engine accepted the work
        archive_path: Path of the packaged output archive
        error: Diagnostic of the fatal error, if any
        failed_stage: Stage name of the fatal error, if any
        history: (state, timestamp) pairs in the order they were entered
    """
    job: Job
    state: JobState = JobState.PENDING
    handle: Optional[str] = None
    archive_path: Optional[str] = None
    error: Optional[str] = None
    failed_stage: Optional[str] = None
    history: list[tuple[JobState, datetime]] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append((self.state, _utcnow()))

    @property
    def job_id(self) -> str:
        return self.job.job_id

    def advance(self, new_state: JobState) -> None:
        """Move to new_state, enforcing the transition table."""
        allowed = TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise InvalidTransition(
                f"job {self.job_id}: cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        self.history.append((new_state, _utcnow()))

    def fail(self, error: StageError) -> None:
        """Record a fatal stage error and enter the matching failure state."""
        failure_state = FAILURE_FOR_ERROR.get(type(error))
        if failure_state is None:
            for error_type, state in FAILURE_FOR_ERROR.items():
                if isinstance(error, error_type):
                    failure_state = state
                    break
        if failure_state is None:
            raise InvalidTransition(f"job {self.job_id}: no failure state for {type(error).__name__}")
        self.advance(failure_state)
        self.error = str(error)
        self.failed_stage = error.stage

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "job_id": self.job_id,
            "state": self.state.value,
            "history": [{"state": s.value, "at": ts.isoformat()} for s, ts in self.history],
        }
        if self.handle:
            result["handle"] = self.handle
        if self.archive_path:
            result["archive_path"] = self.archive_path
        if self.error:
            result["error"] = self.error
            result["failed_stage"] = self.failed_stage
        return result
