"""Batch runner - sequential execution of a job-list document.

Batch document schema:
    {
      "jobs": [
        {
          "job_id": "j1",
          "owner_id": "owner-1",
          "mode": "restricted",
          "platform": "platform_a",
          "work_spec": "https://signed.example/workflow.json",
          "dataset": {"source": "datasets", "path": "owner-1/set.zip"},
          "weights": [{"source": "loras", "path": "owner-1.safetensors"}],
          "destination": "https://signed.example/upload/output.zip",
          "notify_url": "https://hooks.example/done"
        }
      ]
    }

Jobs run in document order, one at a time: job i+1 starts only after job i
reached a terminal state. By default a failed job does not stop the batch;
with fail_fast the batch stops at the first failure and the remaining jobs
are reported as skipped.
"""

import json
import logging
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Optional

from genorch.errors import JobSpecError
from genorch.job_runner import JobRunner
from genorch.schemas.job import STORAGE_SCHEME, URL_SOURCE, ArtifactReference, Job, parse_storage_uri
from genorch.schemas.result import BatchResult
from genorch.schemas.state import JobRecord
from genorch.storage.client import ObjectStoreClient, StorageError

logger = logging.getLogger(__name__)


def parse_batch_document(data: Any) -> list[Job]:
    """
    Parse a batch document into Jobs.

    The whole document is validated before any job runs.

    Raises:
        JobSpecError: If the document is malformed, empty, or has duplicate job ids
    """
    if not isinstance(data, dict) or not isinstance(data.get("jobs"), list):
        raise JobSpecError("batch document must be an object with a 'jobs' list")
    if not data["jobs"]:
        raise JobSpecError("batch document contains no jobs")

    jobs = []
    seen: set[str] = set()
    for index, entry in enumerate(data["jobs"]):
        try:
            job = Job.from_dict(entry)
        except JobSpecError as e:
            raise JobSpecError(f"jobs[{index}]: {e}") from e
        if job.job_id in seen:
            raise JobSpecError(f"jobs[{index}]: duplicate job_id {job.job_id!r}")
        seen.add(job.job_id)
        jobs.append(job)
    return jobs


def serialize_batch_document(jobs: list[Job]) -> dict[str, Any]:
    """Build a batch document from Jobs."""
    return {"jobs": [job.to_dict() for job in jobs]}


def load_batch_document(source: str, store: Optional[ObjectStoreClient] = None) -> list[Job]:
    """
    Load a batch document from a local path, an http(s) URL, or storage://bucket/path.

    Raises:
        JobSpecError: If the document cannot be read or parsed
    """
    if source.startswith(STORAGE_SCHEME):
        try:
            bucket, object_path = parse_storage_uri(source)
        except ValueError as e:
            raise JobSpecError(str(e)) from e
        ref = ArtifactReference(source=bucket, path=object_path)
    elif source.startswith(("http://", "https://")):
        ref = ArtifactReference(source=URL_SOURCE, path=source)
    else:
        return _read_batch_file(Path(source).expanduser())

    store = store or ObjectStoreClient()
    with tempfile.TemporaryDirectory(prefix="genorch-batch-") as tmpdir:
        path = Path(tmpdir) / "jobs.json"
        try:
            store.download(store.resolve_url(ref), path)
        except StorageError as e:
            raise JobSpecError(f"cannot fetch batch document: {e}") from e
        return _read_batch_file(path)


def _read_batch_file(path: Path) -> list[Job]:
    if not path.exists():
        raise JobSpecError(f"batch document not found: {path}")
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise JobSpecError(f"batch document is not valid JSON: {e}") from e
    return parse_batch_document(data)


def run_batch(
    jobs: list[Job],
    runner: JobRunner,
    fail_fast: bool = False,
    batch_id: str = "batch",
    progress_callback: Optional[Callable[..., Any]] = None,
) -> BatchResult:
    """Run jobs in order, one at a time.

    Args:
        jobs: Jobs in document order
        runner: JobRunner shared by every job (one engine)
        fail_fast: Stop at the first failed job
        batch_id: Identifier used in logs and the result
        progress_callback: Optional callback(event, **kwargs).
            Events: 'job_start', 'job_ok', 'job_fail'

    Returns:
        BatchResult with one JobRecord per job
    """
    result = BatchResult(batch_id=batch_id, total=len(jobs))
    records = [JobRecord(job=job) for job in jobs]
    result.records = records

    def _emit(event: str, **kwargs):
        if progress_callback:
            progress_callback(event, **kwargs)

    logger.info(f"Starting batch: {batch_id} ({len(jobs)} jobs, fail_fast={fail_fast})")
    start_time = time.time()

    for index, record in enumerate(records):
        job_start = time.time()
        _emit("job_start", job_id=record.job_id)
        runner.run(record.job, record)
        job_duration = int((time.time() - job_start) * 1000)

        if record.state.is_failure:
            result.failed += 1
            logger.error(f"  FAIL {record.job_id}: {record.error}")
            _emit("job_fail", job_id=record.job_id, duration_ms=job_duration, error=record.error)
            if fail_fast:
                result.skipped = len(records) - index - 1
                result.stopped_early = result.skipped > 0
                if result.stopped_early:
                    logger.error(f"  Stopping batch {batch_id}: {result.skipped} jobs not attempted")
                break
        else:
            result.succeeded += 1
            logger.info(f"  ok {record.job_id} ({job_duration}ms)")
            _emit("job_ok", job_id=record.job_id, duration_ms=job_duration)

    result.duration_ms = int((time.time() - start_time) * 1000)
    logger.info(
        f"Batch {batch_id}: success={result.success}, succeeded={result.succeeded}, "
        f"failed={result.failed}, skipped={result.skipped}, duration={result.duration_ms}ms"
    )
    return result
