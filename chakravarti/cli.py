"""
CLI interface for the chakravarti orchestrator.

Provides commands to initialize configuration, inspect specs and plans, run
jobs and look at persisted job records.

Specs are YAML or JSON files, either passed by path or looked up by id in the
configured specs directory. Real collaborators (model, sandbox, verifier, git)
are supplied by an allowlisted factory; `--dry-run` runs against no-op
collaborators instead.
"""

import asyncio
import json
import signal
from pathlib import Path

import click

from chakravarti import __version__


def _get_config(ctx):
    """Return the loaded config, or defaults when no config file exists."""
    from chakravarti.config import ChakravartiConfig

    config = ctx.obj.get("config")
    if config is not None:
        return config
    error = ctx.obj.get("config_error")
    if error and not error.startswith("chakravarti config.yaml not found"):
        click.echo(f"✗ Invalid config: {error}", err=True)
        raise SystemExit(1)
    return ChakravartiConfig()


def _resolve_spec(config, spec_ref: str):
    """Load a spec by file path, falling back to an id in the specs directory."""
    from chakravarti.errors import ChakravartiError
    from chakravarti.registry import SpecRegistry, load_spec

    try:
        if Path(spec_ref).suffix.lower() in (".yaml", ".yml", ".json"):
            return load_spec(spec_ref)
        return SpecRegistry(config.get_specs_dir()).load(spec_ref)
    except ChakravartiError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)


def _build_collaborators(config, dry_run: bool, factory_path):
    from chakravarti.factory import load_factory
    from chakravarti.handlers import Collaborators, DefaultPlanner

    if dry_run:
        return Collaborators.noop(planner=DefaultPlanner(repo_root=Path.cwd()))

    if not factory_path:
        raise click.UsageError("No collaborators configured: pass --collaborators module:function or --dry-run")

    try:
        factory = load_factory(factory_path, config.allowed_factory_modules)
        collaborators = factory(config)
    except (ValueError, ImportError, AttributeError, TypeError) as e:
        click.echo(f"✗ Cannot load collaborators: {e}", err=True)
        raise SystemExit(1)

    if not isinstance(collaborators, Collaborators):
        click.echo(f"✗ {factory_path} returned {type(collaborators).__name__}, expected Collaborators", err=True)
        raise SystemExit(1)
    return collaborators


async def _run_job(orchestrator, spec, job_config):
    """Run one job, cancelling it on SIGINT where the loop supports signal handlers."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel, "interrupted")
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    try:
        return await orchestrator.run(spec, job_config)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


@click.group()
@click.version_option(version=__version__, prog_name="chakravarti")
@click.pass_context
def main(ctx):
    """
    chakravarti - Spec driven job orchestrator.

    Plans a spec into a DAG of steps, runs each attempt and retries with
    feedback until the acceptance criteria are met.
    """
    from chakravarti.config import load_config

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config()
    except Exception as e:
        # Commands decide whether a missing config is fatal
        ctx.obj["config_error"] = str(e)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize chakravarti configuration."""
    from chakravarti.config import get_chakravarti_home, write_default_config

    home = get_chakravarti_home()
    try:
        cfg_path = write_default_config(home, force=force)
    except FileExistsError:
        click.echo(f"Config already exists at {home / 'config.yaml'}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    click.echo(f"Initialized chakravarti config at {cfg_path}")


@main.command("run")
@click.argument("spec")
@click.option("--dry-run", is_flag=True, help="Run against no-op collaborators")
@click.option("--collaborators", "factory_path", help="Collaborator factory as module:function")
@click.option("--max-attempts", type=int, help="Attempt budget for this job")
@click.option("--optimize", type=click.Choice(["cost", "time", "balanced"]), help="Model selection strategy")
@click.option("--job-timeout", type=float, help="Wall clock limit in seconds")
@click.option("--json", "as_json", is_flag=True, help="Print the final job record as JSON")
@click.pass_context
def run(ctx, spec: str, dry_run: bool, factory_path, max_attempts, optimize, job_timeout, as_json: bool):
    """
    Run a spec until it succeeds, fails or runs out of attempts.

    SPEC is a spec file path or a spec id in the specs directory.

    Examples:

        chakravarti run .specs/add_login.yaml --dry-run

        chakravarti run add_login --collaborators acme.chakravarti:build
    """
    from chakravarti.config import ConfigError
    from chakravarti.events import EventBus
    from chakravarti.job_store import FileJobStore
    from chakravarti.orchestrator import Orchestrator
    from chakravarti.schemas import RunState
    from chakravarti.utils import format_duration, print_error, print_success, setup_logging

    config = _get_config(ctx)
    setup_logging(
        log_file=config.get_log_file_path(),
        log_level=config.log_level,
        log_format=config.log_format,
        console_output=False,
    )

    spec_obj = _resolve_spec(config, spec)
    try:
        job_config = config.to_job_config(
            max_attempts=max_attempts,
            optimize=optimize,
            job_timeout_s=job_timeout,
        )
    except (ConfigError, ValueError) as e:
        raise click.UsageError(str(e))

    collaborators = _build_collaborators(config, dry_run, factory_path)

    bus = EventBus(keep_history=False)
    if not as_json:
        bus.subscribe(lambda event: click.echo(f"  [{event.seq:>3}] {event.describe()}"))

    orchestrator = Orchestrator(collaborators, events=bus, store=FileJobStore(config.get_store_dir()))

    if dry_run and not as_json:
        click.echo("=== DRY RUN MODE === (no-op collaborators)")

    job = asyncio.run(_run_job(orchestrator, spec_obj, job_config))

    if as_json:
        click.echo(json.dumps(job.to_dict(), indent=2))
    else:
        elapsed = (job.updated_at - job.created_at).total_seconds()
        summary = f"{job.id} {job.state.value} after {len(job.attempts)} attempt(s) in {format_duration(elapsed)}"
        if job.state == RunState.SUCCEEDED:
            print_success(summary)
        else:
            print_error(f"{summary}: {job.reason}")

    if job.state != RunState.SUCCEEDED:
        raise SystemExit(1)


@main.command("plan")
@click.argument("spec")
@click.pass_context
def show_plan(ctx, spec: str):
    """Show the default plan for a spec without running it."""
    from chakravarti.handlers import DefaultPlanner
    from chakravarti.graph import StepGraph

    config = _get_config(ctx)
    spec_obj = _resolve_spec(config, spec)

    plan = asyncio.run(DefaultPlanner(repo_root=Path.cwd()).plan(spec_obj))
    graph = StepGraph.build(plan.steps)

    click.echo(f"Plan {plan.id} for {spec_obj.id}: {spec_obj.goal}")
    for batch_no, batch in enumerate(graph.execution_order(), start=1):
        for step in batch:
            deps = f" (after {', '.join(step.depends_on)})" if step.depends_on else ""
            command = f" $ {step.command}" if step.command else ""
            click.echo(f"  {batch_no}. {step.id} [{step.kind.value}]{deps}{command}")
            # Simulate success so dependents become ready
            graph.mark_running(step.id)
            graph.mark_completed(step.id)


@main.command("specs")
@click.pass_context
def list_specs(ctx):
    """List specs in the specs directory."""
    from chakravarti.registry import SpecRegistry

    config = _get_config(ctx)
    registry = SpecRegistry(config.get_specs_dir())
    spec_ids = registry.list_specs()
    if not spec_ids:
        click.echo(f"No specs found in {registry.specs_dir}")
        return
    for spec_id in spec_ids:
        click.echo(spec_id)


@main.command("status")
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, help="Print the job record as JSON")
@click.pass_context
def status(ctx, job_id: str, as_json: bool):
    """Show a persisted job and its attempts."""
    from chakravarti.job_store import FileJobStore

    config = _get_config(ctx)
    job = FileJobStore(config.get_store_dir()).get_job(job_id)
    if job is None:
        click.echo(f"✗ Unknown job: {job_id}", err=True)
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps(job.to_dict(), indent=2))
        return

    click.echo(f"Job: {job.id}")
    click.echo(f"Spec: {job.spec.id}")
    click.echo(f"State: {job.state.value}")
    if job.reason:
        click.echo(f"Reason: {job.reason}")
    for attempt in job.attempts:
        click.echo(f"  attempt {attempt.number}: {attempt.result}")
        for result in attempt.step_results:
            click.echo(f"    {result.step_id}: {result.status.value}")


@main.command("jobs")
@click.option("--state", type=click.Choice(["pending", "planning", "executing", "verifying",
                                            "succeeded", "failed", "abandoned"]),
              help="Only show jobs in this state")
@click.pass_context
def list_jobs(ctx, state):
    """List persisted jobs."""
    from chakravarti.job_store import FileJobStore
    from chakravarti.schemas import RunState

    config = _get_config(ctx)
    jobs = FileJobStore(config.get_store_dir()).list_jobs(RunState(state) if state else None)
    if not jobs:
        click.echo("No jobs found.")
        return
    for job in jobs:
        click.echo(f"{job.id}  {job.state.value:<10} {job.spec.id}  attempts={len(job.attempts)}")


if __name__ == "__main__":
    main()
