# SPDX-License-Identifier: MIT
"""Command-line interface for the cache mirror."""

import asyncio
import functools
import json
import sys
import traceback
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click

from . import __version__
from .config import get_config_manager
from .context import SyncContext
from .enums import SubmissionStatus, SyncPriority, UpdateStatus
from .logging_config import get_status_logger, setup_logging


F = TypeVar("F", bound=Callable[..., Any])
T = TypeVar("T")


def handle_cli_errors(func: F) -> F:
    """Decorator to handle common CLI error patterns.

    Logs the error (with a traceback when ``--verbose`` was given) and exits
    with status code 1.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        status_logger = get_status_logger()
        verbose = kwargs.get("verbose", False)

        try:
            return func(*args, **kwargs)
        except Exception as e:
            if verbose:
                status_logger.error(f"Error in {func.__name__}: {e}")
                traceback.print_exc()
            else:
                status_logger.error(f"Error: {e}")
            sys.exit(1)

    return wrapper  # type: ignore


def print_version(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Print version and exit if requested."""
    if value:
        setup_logging()
        status_logger = get_status_logger()
        status_logger.info(f"cache-mirror version {__version__}")
        ctx.exit(0)


def _run_with_context(operation: Callable[[SyncContext], Awaitable[T]]) -> T:
    """Build a context from configuration, run ``operation`` and tear down."""

    async def runner() -> T:
        context = SyncContext.from_config()
        try:
            return await operation(context)
        finally:
            await context.stop()

    return asyncio.run(runner())


def _echo_json(data: Any) -> None:
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option(
    "--version",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version information and exit",
)
def main() -> None:
    """cache-mirror - Keep a local cache in sync with the origin platform."""
    detail_logger, status_logger = setup_logging()
    detail_logger.debug("CLI initialized")


@main.command()
@handle_cli_errors
def config() -> None:
    """Show the complete current configuration."""
    print(get_config_manager().show_config())


@main.command()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@handle_cli_errors
def populate(verbose: bool) -> None:
    """Rebuild the cache from a full listing of the origin."""

    async def operation(context: SyncContext) -> Any:
        return await context.engine.populate()

    result = _run_with_context(operation)
    _echo_json(result)


@main.command()
@click.option("--group", "group_id", help="Resync only this group")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@handle_cli_errors
def resync(group_id: str | None, verbose: bool) -> None:
    """Detect discrepancies with the origin and repair them."""

    async def operation(context: SyncContext) -> Any:
        return await context.coordinator.resync(group_id)

    result = _run_with_context(operation)
    _echo_json(result)
    if result.status is UpdateStatus.FAILED:
        sys.exit(1)


@main.command()
@click.option(
    "--recover/--no-recover",
    default=False,
    help="Run the recovery ladder when the cache is unhealthy",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@handle_cli_errors
def health(recover: bool, verbose: bool) -> None:
    """Check cache health."""

    async def operation(context: SyncContext) -> dict[str, Any]:
        if recover:
            cycle = await context.health_monitor.run_cycle()
            return {
                "report": cycle["report"].model_dump(mode="json"),
                "recovered": cycle["recovered"],
                "attempts": [a.model_dump(mode="json") for a in cycle["attempts"]],
            }
        report = await context.health_monitor.checker.check()
        return {"report": report.model_dump(mode="json")}

    result = _run_with_context(operation)
    _echo_json(result)
    if not result["report"]["healthy"] and not result.get("recovered"):
        sys.exit(1)


@main.command()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@handle_cli_errors
def drain(verbose: bool) -> None:
    """Re-submit buffered writes that are due."""

    async def operation(context: SyncContext) -> Any:
        return await context.buffer.drain(context.writer.submit_buffered)

    _echo_json(_run_with_context(operation))


@main.command(name="buffer-status")
@click.option(
    "--list",
    "list_status",
    type=click.Choice([s.value for s in SubmissionStatus]),
    help="Also list submissions with this status",
)
@handle_cli_errors
def buffer_status(list_status: str | None) -> None:
    """Show the retry buffer status."""

    async def operation(context: SyncContext) -> dict[str, Any]:
        status = context.buffer.get_status()
        if list_status:
            status["submissions"] = [
                s.to_wire()
                for s in context.buffer.get_submissions(SubmissionStatus(list_status))
            ]
        return status

    _echo_json(_run_with_context(operation))


@main.command(name="buffer-cleanup")
@handle_cli_errors
def buffer_cleanup() -> None:
    """Purge completed buffered writes past the retention window."""
    status_logger = get_status_logger()

    async def operation(context: SyncContext) -> int:
        return context.buffer.cleanup_completed()

    removed = _run_with_context(operation)
    status_logger.info(f"Removed {removed} completed submission(s).")


@main.command(name="buffer-retry")
@click.argument("submission_id")
@handle_cli_errors
def buffer_retry(submission_id: str) -> None:
    """Reset a failed buffered write so the next drain retries it.

    SUBMISSION_ID: The buffer ID reported when the write was queued
    """
    status_logger = get_status_logger()

    async def operation(context: SyncContext) -> bool:
        return context.buffer.retry_submission(submission_id)

    if not _run_with_context(operation):
        status_logger.error(f"No failed submission with ID {submission_id}")
        sys.exit(1)
    status_logger.info(f"Submission {submission_id} queued for retry.")


@main.command()
@click.argument("file_path", type=click.Path(exists=True, path_type=Path))
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@handle_cli_errors
def notify(file_path: Path, verbose: bool) -> None:
    """Apply change notifications read from a JSON file.

    FILE_PATH: JSON object or array of change notifications
    """
    with open(file_path, encoding="utf-8") as f:
        raw = json.load(f)
    notifications = raw if isinstance(raw, list) else [raw]

    async def operation(context: SyncContext) -> Any:
        return await context.receiver.process_batch(notifications)

    summary = _run_with_context(operation)
    _echo_json(summary)
    if summary.failed:
        sys.exit(1)


@main.command()
@click.option("--days", default=7, show_default=True, help="Days of metrics to show")
@handle_cli_errors
def stats(days: int) -> None:
    """Show cache statistics, sync metrics and buffer statistics."""

    async def operation(context: SyncContext) -> dict[str, Any]:
        metrics = await context.engine.metrics.get_metrics(days)
        return {
            "cache": await context.engine.get_cache_stats(),
            "sync_metrics": {
                day: value.model_dump(mode="json") for day, value in metrics.items()
            },
            "buffer": context.buffer.get_stats(days),
        }

    _echo_json(_run_with_context(operation))


def _parse_watch(values: tuple[str, ...]) -> dict[str, SyncPriority]:
    watched: dict[str, SyncPriority] = {}
    for value in values:
        group_id, _, priority = value.partition(":")
        try:
            watched[group_id] = SyncPriority(priority or SyncPriority.NORMAL.value)
        except ValueError as e:
            raise click.BadParameter(f"Unknown priority in '{value}'") from e
    return watched


@main.command()
@click.option(
    "--watch",
    multiple=True,
    help="Periodically resync a group, as GROUP or GROUP:fast|normal|slow",
)
@click.option(
    "--populate/--no-populate",
    "populate_first",
    default=True,
    help="Populate the cache before starting the scheduler",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@handle_cli_errors
def run(watch: tuple[str, ...], populate_first: bool, verbose: bool) -> None:
    """Run the scheduler until interrupted."""
    status_logger = get_status_logger()
    watched = _parse_watch(watch)

    async def operation(context: SyncContext) -> None:
        await context.start()
        for group_id, priority in watched.items():
            context.coordinator.watch_group(group_id, priority)
        if populate_first:
            await context.engine.populate()
        status_logger.info("Running; press Ctrl+C to stop")
        await asyncio.Event().wait()

    try:
        _run_with_context(operation)
    except KeyboardInterrupt:
        status_logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
