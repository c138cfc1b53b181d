import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from genorch.config import GenorchConfig
from genorch.engine.poller import CompletionPoller
from genorch.errors import SubmissionError
from genorch.fetcher import ArtifactFetcher
from genorch.guardrails import GuardrailPolicy
from genorch.job_runner import JobRunner
from genorch.publisher import ResultPublisher
from genorch.schemas.job import Job
from genorch.storage.client import StorageError


class FakeStore:
    """In-memory object store keyed by resolved URL."""

    def __init__(self, blobs=None):
        self.blobs = dict(blobs or {})
        self.downloads = []
        self.puts = []
        self.uploads = []
        self.reject_uploads = False

    def resolve_url(self, ref):
        if ref.is_url:
            return ref.path
        return f"https://store.test/{ref.source}/{ref.path}"

    def download(self, url, dest):
        if url not in self.blobs:
            raise StorageError("download failed with status 404", 404)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.blobs[url])
        self.downloads.append(url)
        return len(self.blobs[url])

    def put_file(self, url, path, content_type="application/zip"):
        if self.reject_uploads:
            raise StorageError("upload rejected with status 403", 403)
        self.puts.append((url, path.read_bytes(), content_type))

    def upload(self, bucket, object_path, path, content_type="application/zip"):
        if self.reject_uploads:
            raise StorageError(f"upload to {bucket}/{object_path} rejected with status 403", 403)
        self.uploads.append((bucket, object_path, path.read_bytes(), content_type))


class FakeEngine:
    """
    Engine stand-in.

    On submit it writes one image per SaveImage node, using the node's
    filename_prefix relative to root, like the real engine does.
    """

    def __init__(self, root: Path, fail_for=()):
        self.root = Path(root)
        self.fail_for = set(fail_for)
        self.submissions = []

    def submit(self, work_spec_path, client_id=None, job_id=None):
        if job_id in self.fail_for:
            raise SubmissionError("engine rejected submission (400): invalid prompt", job_id=job_id)
        graph = json.loads(Path(work_spec_path).read_text())
        self.submissions.append((job_id, graph))
        for node in graph.values():
            if node.get("class_type") == "SaveImage":
                prefix = self.root / node["inputs"]["filename_prefix"]
                prefix.parent.mkdir(parents=True, exist_ok=True)
                Path(f"{prefix}_00001_.png").write_bytes(b"\x89PNG fake")
        return f"h-{job_id}"


class FakeCheck:
    """Completion check that reports done after a number of polls (never if None)."""

    def __init__(self, complete_after=1):
        self.complete_after = complete_after
        self.calls = []

    def is_complete(self, handle):
        self.calls.append(handle)
        return self.complete_after is not None and len(self.calls) >= self.complete_after


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def work_spec_bytes(mode: str, job_id: str) -> bytes:
    graph = {
        "3": {"class_type": "KSampler", "inputs": {"seed": 42, "steps": 20}},
        "9": {"class_type": "SaveImage", "inputs": {"filename_prefix": f"{mode}/outputs/{job_id}/img"}},
    }
    return json.dumps(graph).encode()


def make_descriptor(job_id="j1", mode="restricted", platform="platform_a", **overrides):
    descriptor = {
        "job_id": job_id,
        "owner_id": "owner-1",
        "mode": mode,
        "platform": platform,
        "work_spec": f"https://signed.test/{job_id}/workflow.json",
        "destination": f"https://signed.test/{job_id}/output.zip",
    }
    descriptor.update(overrides)
    return descriptor


@pytest.fixture
def test_config(tmp_path):
    return GenorchConfig(
        root_dir=str(tmp_path / "root"),
        engine_url="http://engine.test",
        poll_interval=2.0,
        poll_timeout=30.0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def engine(test_config):
    return FakeEngine(test_config.root_path)


@pytest.fixture
def check():
    return FakeCheck(complete_after=2)


@pytest.fixture
def notify_session():
    return MagicMock()


@pytest.fixture
def runner(test_config, store, engine, check, clock, notify_session):
    return JobRunner(
        root=test_config.root_path,
        policy=GuardrailPolicy.from_config(test_config),
        fetcher=ArtifactFetcher(store),
        engine=engine,
        poller=CompletionPoller(check, interval=test_config.poll_interval, clock=clock, sleep=clock.sleep),
        publisher=ResultPublisher(store, session=notify_session),
        poll_timeout=test_config.poll_timeout,
    )


@pytest.fixture
def add_job(store):
    """Register a job's work spec in the fake store and return the Job."""

    def _add(job_id="j1", mode="restricted", platform="platform_a", **overrides):
        descriptor = make_descriptor(job_id, mode, platform, **overrides)
        store.blobs[descriptor["work_spec"]] = work_spec_bytes(mode, job_id)
        return Job.from_dict(descriptor)

    return _add
