"""
CLI interface for genorch.

Runs a single job (from options or environment variables) or a batch
document of jobs against the configured generation engine.
"""


import json

import click
from pathlib import Path

from genorch import __version__


@click.group()
@click.version_option(version=__version__, prog_name="genorch")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Path to config.yaml (default: $GENORCH_HOME/config.yaml)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, config_path: str | None, verbose: bool):
    """
    genorch - Job orchestrator for a queue-based generation engine.

    Validate, fetch, submit, wait, package and publish, one job at a time.
    """
    from genorch.config import ConfigError, config_from_env, load_config
    from genorch.utils import setup_logging

    ctx.ensure_object(dict)
    try:
        config = load_config(Path(config_path) if config_path else None)
    except FileNotFoundError as e:
        if config_path:
            ctx.obj["config_error"] = str(e)
            return
        # No config file: run on defaults plus GENORCH_* environment
        try:
            config = config_from_env()
        except ConfigError as env_error:
            ctx.obj["config_error"] = str(env_error)
            return
    except ConfigError as e:
        ctx.obj["config_error"] = str(e)
        return

    ctx.obj["config"] = config
    setup_logging(
        log_file=Path(config.log_file).expanduser() if config.log_file else None,
        log_level="DEBUG" if verbose else config.log_level,
        log_format=config.log_format,
    )


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'genorch init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _echo_record(record) -> None:
    if record.state.value == "done":
        click.echo(f"✓ {record.job_id} done (handle={record.handle})")
    elif record.state.is_failure:
        click.echo(f"✗ {record.error}", err=True)
    else:
        click.echo(f"- {record.job_id} skipped ({record.state.value})", err=True)


@main.command("run")
@click.option("--job-id", envvar="JOB_ID", help="Job identifier [env: JOB_ID]")
@click.option("--owner-id", envvar="OWNER_ID", help="Owner identifier [env: OWNER_ID]")
@click.option("--mode", envvar="MODE", help="restricted | unrestricted [env: MODE]")
@click.option("--platform", envvar="PLATFORM", help="Destination platform [env: PLATFORM]")
@click.option("--work-spec", envvar="WORK_SPEC_URL",
              help="Work specification URL or storage://bucket/path [env: WORK_SPEC_URL]")
@click.option("--dataset", envvar="DATASET_URL", default=None,
              help="Optional dataset bundle (zip) reference [env: DATASET_URL]")
@click.option("--weights", envvar="WEIGHTS_URL", multiple=True,
              help="Model weight reference, repeatable [env: WEIGHTS_URL]")
@click.option("--destination", envvar="DESTINATION_URL",
              help="Signed upload URL or storage://bucket/path [env: DESTINATION_URL]")
@click.option("--notify-url", envvar="NOTIFY_URL", default=None,
              help="Optional completion webhook [env: NOTIFY_URL]")
@click.pass_context
def run(ctx, job_id, owner_id, mode, platform, work_spec, dataset, weights, destination, notify_url):
    """
    Run a single job.

    Every option falls back to its environment variable.

    Examples:

        genorch run --job-id j1 --owner-id o1 --mode restricted --platform platform_a \\
            --work-spec https://signed/workflow.json --destination https://signed/output.zip

        JOB_ID=j1 OWNER_ID=o1 MODE=restricted ... genorch run
    """
    from genorch.errors import JobSpecError
    from genorch.job_runner import build_runner
    from genorch.schemas.job import Job

    config = _require_config(ctx)

    descriptor = {
        "job_id": job_id,
        "owner_id": owner_id,
        "mode": mode,
        "platform": platform,
        "work_spec": work_spec,
        "dataset": dataset,
        "weights": list(weights),
        "destination": destination,
        "notify_url": notify_url,
    }
    try:
        job = Job.from_dict(descriptor)
    except JobSpecError as e:
        click.echo(f"✗ Invalid job: {e}", err=True)
        raise SystemExit(1)

    record = build_runner(config).run(job)
    _echo_record(record)
    if record.state.is_failure:
        raise SystemExit(1)


@main.command("batch")
@click.argument("source", envvar="BATCH_URL", required=False)
@click.option("--fail-fast/--continue-on-failure", default=None,
              help="Stop at the first failed job (default from config: fail_fast)")
@click.option("--summary-json", type=click.Path(dir_okay=False), default=None,
              help="Write the batch result as JSON to this path")
@click.pass_context
def batch(ctx, source: str | None, fail_fast: bool | None, summary_json: str | None):
    """
    Run every job in a batch document, in order.

    SOURCE is a local path, an http(s) URL, or storage://bucket/path of a
    document shaped {"jobs": [...]}. Falls back to $BATCH_URL.

    Examples:

        genorch batch jobs.json

        genorch batch https://signed.example/jobs.json --fail-fast
    """
    from genorch.batch import load_batch_document, run_batch
    from genorch.errors import JobSpecError
    from genorch.job_runner import build_runner
    from genorch.storage.client import ObjectStoreClient

    config = _require_config(ctx)
    if not source:
        raise click.UsageError("No batch document given (argument SOURCE or $BATCH_URL)")

    try:
        jobs = load_batch_document(source, store=ObjectStoreClient.from_config(config))
    except JobSpecError as e:
        click.echo(f"✗ Invalid batch document: {e}", err=True)
        raise SystemExit(1)

    if fail_fast is None:
        fail_fast = config.fail_fast

    result = run_batch(jobs, build_runner(config), fail_fast=fail_fast, batch_id=Path(source.split("?")[0]).stem or "batch")

    for record in result.records:
        _echo_record(record)

    if summary_json:
        Path(summary_json).write_text(json.dumps(result.to_dict(), indent=2))

    click.echo(
        f"{result.succeeded}/{result.total} jobs done, {result.failed} failed, {result.skipped} skipped"
    )
    if result.failures:
        click.echo(f"Failed jobs: {', '.join(r.job_id for r in result.failures)}", err=True)
    if not result.success:
        raise SystemExit(1)
    click.echo("ALL_DONE")


@main.command("validate")
@click.argument("mode")
@click.argument("platform")
@click.pass_context
def validate(ctx, mode: str, platform: str):
    """
    Check a (MODE, PLATFORM) pair against the guardrail policy.

    Example:

        genorch validate unrestricted platform_d
    """
    from genorch.guardrails import GuardrailPolicy

    config = _require_config(ctx)
    violation = GuardrailPolicy.from_config(config).check(mode, platform)
    if violation:
        click.echo(f"✗ guardrail: {violation}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ {mode} allowed on {platform}")


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize genorch configuration."""
    from genorch.config import default_config_dict, get_genorch_home
    import yaml

    home = get_genorch_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    cfg_path.write_text(yaml.safe_dump(default_config_dict(home), sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# GENORCH_STORAGE_URL=...\n# GENORCH_STORAGE_KEY=...\n")

    click.echo(f"Initialized genorch config at {cfg_path}")


if __name__ == "__main__":
    main()
