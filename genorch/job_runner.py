"""JobRunner - drives one job through its full lifecycle.

Stages, in order:
1. validate   guardrail check of (mode, platform), before any I/O
2. fetch      dataset bundle, model weights, work specification
3. submit     post the work specification to the engine
4. poll       wait for completion, bounded by the job timeout
5. package    stamp metadata and archive the output directory
6. publish    upload the archive, then notify the webhook (best-effort)

A fatal stage error stops the pipeline and leaves the JobRecord in the
matching failure state. Nothing is retried.

Usage:
    from genorch.job_runner import build_runner

    runner = build_runner(config)
    record = runner.run(job)
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from genorch.config import GenorchConfig
from genorch.engine.client import EngineClient
from genorch.engine.completion import build_completion_check
from genorch.engine.poller import CompletionPoller, EngineBusy, EngineLease
from genorch.errors import FetchError, NotifyError, StageError, SubmissionError
from genorch.fetcher import ArtifactFetcher
from genorch.guardrails import GuardrailPolicy
from genorch.packager import package_outputs
from genorch.publisher import ResultPublisher
from genorch.schemas.job import Job
from genorch.schemas.result import OutputMetadata
from genorch.schemas.state import JobRecord, JobState
from genorch.storage.client import ObjectStoreClient
from genorch.workspace import JobWorkspace

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRunner:
    """Runs jobs one at a time against a single engine."""

    def __init__(
        self,
        root: Path,
        policy: GuardrailPolicy,
        fetcher: ArtifactFetcher,
        engine: EngineClient,
        poller: CompletionPoller,
        publisher: ResultPublisher,
        poll_timeout: float = 3600.0,
        lease: Optional[EngineLease] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.root = Path(root)
        self.policy = policy
        self.fetcher = fetcher
        self.engine = engine
        self.poller = poller
        self.publisher = publisher
        self.poll_timeout = poll_timeout
        self.lease = lease or EngineLease()
        self.now = now

    def run(self, job: Job, record: Optional[JobRecord] = None) -> JobRecord:
        """
        Run job to a terminal state.

        Stage errors are recorded on the returned JobRecord, not raised.
        """
        record = record or JobRecord(job=job)
        log_extra = {"job_id": job.job_id}
        logger.info(
            f"Job {job.job_id}: mode={job.mode.value} platform={job.platform} owner={job.owner_id}",
            extra=log_extra,
        )

        try:
            self._run_stages(job, record)
        except StageError as e:
            record.fail(e)
            logger.error(str(e), extra={**log_extra, "stage": e.stage, "event": "job.failed"})
            return record

        logger.info(f"JOB_OK {job.job_id}", extra={**log_extra, "event": "job.completed"})
        return record

    def _run_stages(self, job: Job, record: JobRecord) -> None:
        job_id = job.job_id

        self.policy.validate(job.mode, job.platform, job_id=job_id)
        record.advance(JobState.VALIDATED)

        workspace = JobWorkspace(self.root, job)
        try:
            workspace.prepare()
        except OSError as e:
            raise FetchError(f"cannot create job directories under {workspace.mode_root}: {e}", job_id=job_id) from e
        artifacts = self.fetcher.fetch_job_artifacts(workspace)
        record.advance(JobState.ARTIFACTS_READY)

        try:
            with self.lease.hold(job_id):
                logger.info("Submitting work specification to engine...", extra={"job_id": job_id, "stage": "submit"})
                handle = self.engine.submit(artifacts.work_spec, job_id=job_id)
                record.handle = handle
                record.advance(JobState.SUBMITTED)
                logger.info(f"Engine handle={handle}", extra={"job_id": job_id, "stage": "submit"})

                record.advance(JobState.POLLING)
                self.poller.await_completion(handle, self.poll_timeout, job_id=job_id)
                record.advance(JobState.COMPLETED)
        except EngineBusy as e:
            raise SubmissionError(str(e), job_id=job_id) from e

        metadata = OutputMetadata(
            job_id=job_id,
            submission_handle=handle,
            mode=job.mode.value,
            platform=job.platform,
            owner_id=job.owner_id,
            completed_at=self.now(),
        )
        archive = package_outputs(workspace.output_dir, workspace.archive_path, metadata)
        record.archive_path = str(archive)
        record.advance(JobState.PACKAGED)

        self.publisher.publish(archive, job.destination, job_id=job_id)
        record.advance(JobState.PUBLISHED)

        if job.notify_url:
            self._notify(job, handle)

        record.advance(JobState.DONE)

    def _notify(self, job: Job, handle: str) -> None:
        summary = {
            "job_id": job.job_id,
            "mode": job.mode.value,
            "platform": job.platform,
            "status": "done",
            "submission_handle": handle,
        }
        try:
            self.publisher.notify(job.notify_url, summary)
        except NotifyError as e:
            logger.warning(str(e), extra={"job_id": job.job_id, "stage": "notify"})


def build_runner(config: GenorchConfig, lease: Optional[EngineLease] = None) -> JobRunner:
    """Wire a JobRunner from configuration."""
    store = ObjectStoreClient.from_config(config)
    engine = EngineClient.from_config(config)
    check = build_completion_check(config.completion_check, engine)
    return JobRunner(
        root=config.root_path,
        policy=GuardrailPolicy.from_config(config),
        fetcher=ArtifactFetcher(store),
        engine=engine,
        poller=CompletionPoller(check, interval=config.poll_interval),
        publisher=ResultPublisher(store, notify_timeout=config.notify_timeout),
        poll_timeout=config.poll_timeout,
        lease=lease,
    )


def run_job(job: Job, config: GenorchConfig) -> JobRecord:
    """Run a single job with clients built from config."""
    return build_runner(config).run(job)
