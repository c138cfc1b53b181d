"""
Result schemas - output metadata and batch summaries.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from genorch.schemas.state import JobRecord, JobState


@dataclass(frozen=True)
class OutputMetadata:
    """
    Metadata record written next to a job's produced files.

    Created once, after the engine reports completion and before packaging.
    """
    job_id: str
    submission_handle: str
    mode: str
    platform: str
    owner_id: str
    completed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        completed = self.completed_at.astimezone(timezone.utc)
        return {
            "job_id": self.job_id,
            "submission_handle": self.submission_handle,
            "mode": self.mode,
            "platform": self.platform,
            "owner_id": self.owner_id,
            "completed_at": completed.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OutputMetadata":
        completed_at = datetime.strptime(data["completed_at"], "%Y-%m-%dT%H:%M:%SZ")
        return cls(
            job_id=data["job_id"],
            submission_handle=data["submission_handle"],
            mode=data["mode"],
            platform=data["platform"],
            owner_id=data["owner_id"],
            completed_at=completed_at.replace(tzinfo=timezone.utc),
        )


@dataclass
class BatchResult:
    """
    Aggregate outcome of a batch run.

    - total: number of jobs in the batch document
    - succeeded / failed: jobs that reached done / a failure state
    - skipped: jobs never attempted (fail-fast stop)
    - records: one JobRecord per job, in document order
    - stopped_early: true if fail-fast ended the batch
    """
    batch_id: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    records: list[JobRecord] = field(default_factory=list)
    duration_ms: int = 0
    stopped_early: bool = False

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.skipped == 0

    @property
    def failures(self) -> list[JobRecord]:
        return [r for r in self.records if r.state.is_failure]

    def state_of(self, job_id: str) -> Optional[JobState]:
        for record in self.records:
            if record.job_id == job_id:
                return record.state
        return None

    def to_dict(self) -> dict[str, Any]:
        result = {
            "batch_id": self.batch_id,
            "success": self.success,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration_ms": self.duration_ms,
            "jobs": [r.to_dict() for r in self.records],
        }
        if self.stopped_early:
            result["stopped_early"] = True
        return result
