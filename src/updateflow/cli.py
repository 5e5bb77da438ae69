# cli.py
from __future__ import annotations

import logging
import sys
from dataclasses import replace
from pathlib import Path

import click

from updateflow.config import BACKENDS, EngineConfig, RunOptions
from updateflow.dag import build_waves
from updateflow.errors import ConfigurationError, CacheBackingError
from updateflow.runner import ABORT_INTERRUPTED, load_workflow, run_steps
from updateflow.model import CancellationToken
from updateflow.ui.console import Console, set_console, get_console

DEFAULT_WORKFLOW = "updateflow_workflow.py"

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    current_dir = Path(".")
    default_workflow = current_dir / DEFAULT_WORKFLOW
    files = [default_workflow] if default_workflow.exists() else []
    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            files.append(path)
    return sorted(files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  updateflow run --workflow my_workflow.py",
            )
            sys.exit(EXIT_CONFIG)
        return workflow_path

    workflow_files = find_workflow_files()
    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", "  *_workflow.py"],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}",
        )
        sys.exit(EXIT_CONFIG)
    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  updateflow run --workflow my_workflow.py",
        )
        sys.exit(EXIT_CONFIG)
    return workflow_files[0]


def _load_or_exit(workflow: str | None):
    console = get_console()
    workflow_path = discover_workflow(workflow)
    console.print_debug(f"workflow: {workflow_path.resolve()}")
    try:
        steps = load_workflow(workflow_path)
        waves = build_waves(steps)
    except ConfigurationError as e:
        console.print_error("Invalid workflow", str(e))
        if console.debug and e.__cause__ is not None:
            console.print_exception(e.__cause__)
        sys.exit(EXIT_CONFIG)
    return workflow_path, steps, waves


@click.group()
@click.option("--debug", is_flag=True, default=False, help="Enable debug mode (stack traces and debug logging)")
@click.pass_context
def cli(ctx, debug):
    """updateflow: run package-manager update steps as a dependency-ordered, cached workflow."""
    config = EngineConfig.from_env()
    level = logging.DEBUG if debug else getattr(logging, config.log_level, logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config"] = config


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--parallel/--sequential", default=True, show_default=True, help="Run steps of a wave concurrently")
@click.option("--workers", default=None, type=int, help="Number of parallel workers per wave")
@click.option("--cache/--no-cache", "use_cache", default=True, show_default=True, help="Serve cacheable steps from the cache")
@click.option("--refresh", is_flag=True, default=False, help="Recompute cacheable steps and overwrite their entries")
@click.option("--cache-ttl", default=None, type=float, help="Default cache TTL in seconds")
@click.option("--cache-backend", default=None, type=click.Choice(BACKENDS), help="Cache persistence backend")
@click.option("--cache-dir", default=None, help="Cache directory for the file backend")
@click.option("--stop-on-failure", is_flag=True, default=False, help="Skip remaining waves once a step fails")
@click.option("--skip", "skip", multiple=True, help="Step id to skip (repeatable)")
@click.option("--dry-run", is_flag=True, default=False, help="Show what would run without executing anything")
@click.option("--summary-out", default=None, type=click.Path(dir_okay=False), help="Write the JSON run summary here")
@click.pass_context
def run(ctx, workflow, parallel, workers, use_cache, refresh, cache_ttl, cache_backend, cache_dir,
        stop_on_failure, skip, dry_run, summary_out):
    """Run an update workflow."""
    console = get_console()
    config: EngineConfig = ctx.obj["config"]
    if cache_backend:
        config = replace(config, cache_backend=cache_backend)
    if cache_dir:
        config = replace(config, cache_dir=Path(cache_dir))
    if cache_ttl is not None:
        config = replace(config, cache_ttl=cache_ttl)

    workflow_path, steps, waves = _load_or_exit(workflow)

    unknown = sorted(set(skip) - {s.id for s in steps})
    if unknown:
        console.print_error("Unknown step in --skip", ", ".join(unknown))
        sys.exit(EXIT_CONFIG)

    options = RunOptions(
        parallel=parallel,
        max_workers=workers or config.max_workers,
        stop_on_failure=stop_on_failure,
        skip=frozenset(skip),
        dry_run=dry_run,
        use_cache=use_cache,
        force_refresh=refresh,
    )

    console.print_run_started(workflow=workflow_path.name, step_count=len(steps), wave_count=len(waves))
    console.print_plan(waves)

    console.print_debug(
        f"cache: {'off' if not use_cache or dry_run else config.cache_backend}, ttl={config.cache_ttl}s, "
        f"workers={options.max_workers}, parallel={options.parallel}"
    )
    token = CancellationToken()
    try:
        cache = config.make_cache() if use_cache and not dry_run else None
        summary = run_steps(steps, options=options, cache=cache, token=token, default_ttl=config.cache_ttl)
    except KeyboardInterrupt:
        token.cancel(ABORT_INTERRUPTED)
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except CacheBackingError as e:
        console.print_error("Cache backend unavailable", str(e), suggestion="Try --cache-backend memory")
        sys.exit(EXIT_CONFIG)

    console.print_summary(summary)
    if summary_out:
        path = summary.write(summary_out)
        console.print_info(f"Summary written to {path}")

    if summary.abort_reason == ABORT_INTERRUPTED:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    if not summary.ok:
        sys.exit(EXIT_FAILED)


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
def plan(workflow):
    """Print the wave plan for a workflow without running it."""
    _path, _steps, waves = _load_or_exit(workflow)
    get_console().print_plan(waves)


@cli.group()
def cache():
    """Manage the persistent step cache."""


@cache.command("clear")
@click.option("--cache-backend", default=None, type=click.Choice(BACKENDS), help="Cache persistence backend")
@click.option("--cache-dir", default=None, help="Cache directory for the file backend")
@click.pass_context
def cache_clear(ctx, cache_backend, cache_dir):
    """Invalidate every cached entry."""
    console = get_console()
    config: EngineConfig = ctx.obj["config"]
    if cache_backend:
        config = replace(config, cache_backend=cache_backend)
    if cache_dir:
        config = replace(config, cache_dir=Path(cache_dir))
    try:
        config.make_cache().invalidate_all()
    except CacheBackingError as e:
        console.print_error("Cache backend unavailable", str(e))
        sys.exit(EXIT_CONFIG)
    console.print_info(f"Cache cleared ({config.cache_backend})")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
