"""Tests for the genorch CLI."""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from genorch.cli import main
from genorch.errors import SubmissionError
from genorch.schemas.state import JobRecord, JobState

from conftest import make_descriptor


def _done_record(job):
    record = JobRecord(job=job)
    for state in (JobState.VALIDATED, JobState.ARTIFACTS_READY, JobState.SUBMITTED,
                  JobState.POLLING, JobState.COMPLETED, JobState.PACKAGED,
                  JobState.PUBLISHED, JobState.DONE):
        record.advance(state)
    record.handle = f"h-{job.job_id}"
    return record


def _failed_record(job):
    record = JobRecord(job=job)
    record.advance(JobState.VALIDATED)
    record.advance(JobState.ARTIFACTS_READY)
    record.fail(SubmissionError("engine response missing prompt_id", job_id=job.job_id, malformed=True))
    return record


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"root_dir": str(tmp_path / "root"), "log_format": "structured"}))
    return path


@pytest.fixture
def cli():
    yield CliRunner()
    # Handlers installed by the group callback point at CliRunner's streams
    logging.getLogger("genorch").handlers = []


RUN_ARGS = [
    "--job-id", "j1",
    "--owner-id", "owner-1",
    "--mode", "restricted",
    "--platform", "platform_a",
    "--work-spec", "https://signed.test/j1/workflow.json",
    "--destination", "https://signed.test/j1/output.zip",
]


class TestRunCommand:
    """Tests for `genorch run`."""

    def test_run_success(self, cli, config_file):
        fake_runner = MagicMock()
        fake_runner.run.side_effect = _done_record

        with patch("genorch.job_runner.build_runner", return_value=fake_runner) as build:
            result = cli.invoke(main, ["--config", str(config_file), "run", *RUN_ARGS])

        assert result.exit_code == 0, result.output
        assert "✓ j1 done (handle=h-j1)" in result.output
        job = fake_runner.run.call_args.args[0]
        assert job.job_id == "j1"
        assert job.platform == "platform_a"
        assert build.call_args.args[0].root_dir.endswith("root")

    def test_run_from_environment(self, cli, config_file):
        fake_runner = MagicMock()
        fake_runner.run.side_effect = _done_record
        env = {
            "JOB_ID": "env-job",
            "OWNER_ID": "owner-2",
            "MODE": "unrestricted",
            "PLATFORM": "platform_d",
            "WORK_SPEC_URL": "https://signed.test/w.json",
            "DATASET_URL": "https://signed.test/set.zip",
            "WEIGHTS_URL": "https://signed.test/w.safetensors",
            "DESTINATION_URL": "storage://outputs/owner-2/env-job.zip",
            "NOTIFY_URL": "https://hooks.test/done",
        }

        with patch("genorch.job_runner.build_runner", return_value=fake_runner):
            result = cli.invoke(main, ["--config", str(config_file), "run"], env=env)

        assert result.exit_code == 0, result.output
        job = fake_runner.run.call_args.args[0]
        assert job.job_id == "env-job"
        assert job.dataset.path == "https://signed.test/set.zip"
        assert [w.path for w in job.weights] == ["https://signed.test/w.safetensors"]
        assert job.destination == "storage://outputs/owner-2/env-job.zip"
        assert job.notify_url == "https://hooks.test/done"

    def test_run_failure_exits_nonzero(self, cli, config_file):
        fake_runner = MagicMock()
        fake_runner.run.side_effect = _failed_record

        with patch("genorch.job_runner.build_runner", return_value=fake_runner):
            result = cli.invoke(main, ["--config", str(config_file), "run", *RUN_ARGS])

        assert result.exit_code == 1
        assert "✗ job j1 failed at submit: engine response missing prompt_id" in result.output

    def test_run_missing_field(self, cli, config_file):
        with patch("genorch.job_runner.build_runner") as build:
            result = cli.invoke(main, ["--config", str(config_file), "run", "--job-id", "j1"], env={
                "OWNER_ID": "", "MODE": "", "PLATFORM": "", "WORK_SPEC_URL": "", "DESTINATION_URL": "",
            })

        assert result.exit_code == 1
        assert "✗ Invalid job:" in result.output
        build.assert_not_called()

    def test_missing_explicit_config(self, cli, tmp_path):
        result = cli.invoke(main, ["--config", str(tmp_path / "nope.yaml"), "run", *RUN_ARGS])

        assert result.exit_code == 1
        assert "✗ Config not loaded" in result.output


class TestBatchCommand:
    """Tests for `genorch batch`."""

    @pytest.fixture
    def jobs_file(self, tmp_path, add_job):
        jobs = [add_job("j1"), add_job("j2"), add_job("j3")]
        path = tmp_path / "nightly.json"
        path.write_text(json.dumps({"jobs": [job.to_dict() for job in jobs]}))
        return path

    def test_batch_all_done(self, cli, config_file, jobs_file, runner):
        with patch("genorch.job_runner.build_runner", return_value=runner):
            result = cli.invoke(main, ["--config", str(config_file), "batch", str(jobs_file)])

        assert result.exit_code == 0, result.output
        assert "3/3 jobs done, 0 failed, 0 skipped" in result.output
        assert "Failed jobs" not in result.output
        assert "ALL_DONE" in result.output

    def test_batch_with_failure_continues(self, cli, config_file, jobs_file, runner, engine, tmp_path):
        engine.fail_for.add("j2")
        summary = tmp_path / "summary.json"

        with patch("genorch.job_runner.build_runner", return_value=runner):
            result = cli.invoke(main, [
                "--config", str(config_file), "batch", str(jobs_file), "--summary-json", str(summary),
            ])

        assert result.exit_code == 1
        assert "2/3 jobs done, 1 failed, 0 skipped" in result.output
        assert "Failed jobs: j2" in result.output
        assert "ALL_DONE" not in result.output
        data = json.loads(summary.read_text())
        assert data["batch_id"] == "nightly"
        assert [j["state"] for j in data["jobs"]] == ["done", "submit_failed", "done"]

    def test_batch_fail_fast(self, cli, config_file, jobs_file, runner, engine):
        engine.fail_for.add("j2")

        with patch("genorch.job_runner.build_runner", return_value=runner):
            result = cli.invoke(main, ["--config", str(config_file), "batch", str(jobs_file), "--fail-fast"])

        assert result.exit_code == 1
        assert "1/3 jobs done, 1 failed, 1 skipped" in result.output
        assert "- j3 skipped (pending)" in result.output

    def test_batch_fail_fast_from_config(self, cli, tmp_path, jobs_file, runner, engine):
        config_path = tmp_path / "strict.yaml"
        config_path.write_text(yaml.safe_dump({"root_dir": str(tmp_path / "root"), "fail_fast": True}))
        engine.fail_for.add("j1")

        with patch("genorch.job_runner.build_runner", return_value=runner):
            result = cli.invoke(main, ["--config", str(config_path), "batch", str(jobs_file)])

        assert "0/3 jobs done, 1 failed, 2 skipped" in result.output

    def test_batch_invalid_document(self, cli, config_file, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"jobs": [make_descriptor("j1"), make_descriptor("j1")]}))

        with patch("genorch.job_runner.build_runner") as build:
            result = cli.invoke(main, ["--config", str(config_file), "batch", str(path)])

        assert result.exit_code == 1
        assert "✗ Invalid batch document:" in result.output
        assert "duplicate job_id" in result.output
        build.assert_not_called()

    def test_batch_source_from_environment(self, cli, config_file, jobs_file, runner):
        with patch("genorch.job_runner.build_runner", return_value=runner):
            result = cli.invoke(main, ["--config", str(config_file), "batch"], env={"BATCH_URL": str(jobs_file)})

        assert result.exit_code == 0, result.output

    def test_batch_without_source(self, cli, config_file):
        result = cli.invoke(main, ["--config", str(config_file), "batch"], env={"BATCH_URL": ""})
        assert result.exit_code == 2
        assert "No batch document given" in result.output


class TestValidateCommand:
    """Tests for `genorch validate`."""

    def test_allowed_pair(self, cli, config_file):
        result = cli.invoke(main, ["--config", str(config_file), "validate", "unrestricted", "platform_d"])
        assert result.exit_code == 0
        assert "✓ unrestricted allowed on platform_d" in result.output

    def test_violation(self, cli, config_file):
        result = cli.invoke(main, ["--config", str(config_file), "validate", "unrestricted", "platform_a"])
        assert result.exit_code == 1
        assert "✗ guardrail: platform_a must be restricted" in result.output


class TestInitCommand:
    """Tests for `genorch init`."""

    def test_init_creates_config(self, cli, tmp_path):
        home = tmp_path / "home"

        result = cli.invoke(main, ["init"], env={"GENORCH_HOME": str(home)})

        assert result.exit_code == 0, result.output
        data = yaml.safe_load((home / "config.yaml").read_text())
        assert data["engine_url"] == "http://127.0.0.1:8188"
        assert data["env_file"] == str(home / ".env")
        assert (home / ".env").exists()

    def test_init_refuses_overwrite(self, cli, tmp_path):
        home = tmp_path / "home"
        home.mkdir()
        (home / "config.yaml").write_text("fail_fast: true\n")

        result = cli.invoke(main, ["init"], env={"GENORCH_HOME": str(home)})

        assert result.exit_code == 1
        assert "Use --force" in result.output
        assert (home / "config.yaml").read_text() == "fail_fast: true\n"

    def test_init_force(self, cli, tmp_path):
        home = tmp_path / "home"
        home.mkdir()
        (home / "config.yaml").write_text("fail_fast: true\n")

        result = cli.invoke(main, ["init", "--force"], env={"GENORCH_HOME": str(home)})

        assert result.exit_code == 0
        assert "root_dir" in (home / "config.yaml").read_text()
