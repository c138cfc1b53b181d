"""
Error classes for genorch job execution.

Every fatal failure inside a job's pipeline is a StageError carrying the
job id and the stage that failed. The job runner catches StageError at the
job boundary, records the matching terminal state, and stops the pipeline.
Nothing here is retried automatically.

Error handling contract:
- Stage functions raise, they never return error values
- Transport errors are re-raised as the stage's error (raise ... from e)
- NotifyError is best-effort: logged by the runner, never propagated
"""

from typing import Optional


class GenorchError(Exception):
    """Base exception for genorch."""
    pass


class ConfigError(GenorchError):
    """Configuration validation error."""
    pass


class JobSpecError(GenorchError):
    """Invalid job descriptor or batch document."""
    pass


class StageError(GenorchError):
    """
    Fatal failure of one pipeline stage for one job.

    str() yields the single-line diagnostic, e.g.
    "job j1 failed at submit: engine response missing prompt_id".
    """

    stage = "unknown"

    def __init__(self, message: str, job_id: Optional[str] = None):
        self.message = message
        self.job_id = job_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.job_id:
            return f"job {self.job_id} failed at {self.stage}: {self.message}"
        return f"{self.stage} failed: {self.message}"


class PolicyViolation(StageError):
    """Guardrail rejected the (mode, platform) pair."""
    stage = "validate"


class FetchError(StageError):
    """Required artifact missing, unreachable, or unreadable."""
    stage = "fetch"


class SubmissionError(StageError):
    """
    Engine rejected the submission.

    malformed is True when the engine answered but the response had no
    handle; False for transport-level failures.
    """
    stage = "submit"

    def __init__(self, message: str, job_id: Optional[str] = None, malformed: bool = False):
        super().__init__(message, job_id)
        self.malformed = malformed


class PollTimeout(StageError):
    """
    Engine did not report completion within the job's timeout.

    The engine is not asked to cancel; the computation may keep running.
    """
    stage = "poll"

    def __init__(self, message: str, job_id: Optional[str] = None,
                 handle: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(message, job_id)
        self.handle = handle
        self.timeout = timeout


class PackagingError(StageError):
    """Unexpected filesystem state while writing metadata or archiving."""
    stage = "package"


class PublishError(StageError):
    """Destination unreachable or rejected the upload."""
    stage = "publish"


class NotifyError(StageError):
    """Completion webhook failed. Best-effort only."""
    stage = "notify"
