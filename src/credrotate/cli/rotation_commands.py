"""CLI commands for managed-account credential rotation.

Provides command-line interface for:
- Rotating credentials for matching accounts (adopt-existing / set-new)
- Listing the accounts a filter would select

Exit codes for `rotate`:
    0  all accounts succeeded or were skipped, propagation ok, not aborted
    1  one or more accounts failed, or the run was aborted (an abort
       overrides 0 even when every outcome is Succeeded or Skipped)
    2  directory unavailable, invalid settings or other batch-fatal error
    3  rotations succeeded but propagation failed
"""

from __future__ import annotations

import json
import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click
from rich.console import Console
from rich.table import Table

from ..config import get_settings
from ..exceptions import ConfigurationError, DirectoryUnavailable
from ..logging_config import setup_logging
from ..rotation.models import BatchSummary, RotationMode, RotationState
from ..rotation.orchestrator import BatchOrchestrator
from ..wiring import SECRET_SOURCES, build_directory, build_orchestrator

logger = logging.getLogger(__name__)

EXIT_FATAL = 2

_STATE_STYLES = {
    RotationState.SUCCEEDED: "green",
    RotationState.SKIPPED: "yellow",
    RotationState.FAILED: "red",
}


@contextmanager
def _abort_on_interrupt(orchestrator: BatchOrchestrator) -> Iterator[None]:
    """Route SIGINT to orchestrator.abort() for the duration of a run."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        click.echo("Interrupt received: finishing in-flight accounts, then stopping", err=True)
        orchestrator.abort()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def render_summary(summary: BatchSummary, console: Console) -> None:
    """Print the per-account outcome table and counts."""
    if summary.is_empty:
        console.print("[green]✓[/green] No accounts matched; nothing to rotate")
        return

    table = Table(title="Rotation Results", show_header=True, header_style="bold magenta")
    table.add_column("Account", style="cyan", no_wrap=True)
    table.add_column("State")
    table.add_column("Error", style="red")
    table.add_column("Detail", style="dim")

    for outcome in summary.outcomes:
        color = _STATE_STYLES.get(outcome.state, "white")
        error = outcome.error_kind.value if outcome.error_kind else ""
        if outcome.manual_remediation:
            error += " [bold](manual remediation)[/bold]"
        table.add_row(
            outcome.account_id,
            f"[{color}]{outcome.state.value}[/{color}]",
            error,
            (outcome.error_detail or "")[:80],
        )

    console.print(table)
    counts = summary.counts()
    console.print(
        f"\nSucceeded: {counts['succeeded']}  Skipped: {counts['skipped']}  "
        f"Failed: {counts['failed']}  Manual remediation: {counts['manual_remediation_needed']}"
    )
    if summary.propagation_warning:
        console.print(f"[yellow]⚠ Propagation failed:[/yellow] {summary.propagation_warning}")
    if summary.aborted:
        console.print("[yellow]⚠ Run aborted by operator; propagation skipped[/yellow]")


@click.command(name="rotate")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in RotationMode]),
    required=True,
    help="adopt-existing: platform adopts the directory password; set-new: write a new password",
)
@click.option("--filter", "filter_pattern", default="*", show_default=True, help="Glob over account identifiers")
@click.option("--confirm-each", is_flag=True, help="Ask before rotating each account")
@click.option("--suppress-propagation", is_flag=True, help="Do not restart dependent services")
@click.option("--max-concurrency", type=click.IntRange(min=1), default=None, help="Accounts processed in parallel")
@click.option("--log-path", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Transcript log file")
@click.option(
    "--secret-source",
    type=click.Choice(list(SECRET_SOURCES)),
    default="prompt",
    show_default=True,
    help="Where set-new passwords come from",
)
@click.option("--report-path", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Write JSON run report")
@click.pass_context
def rotate_command(
    ctx: click.Context,
    mode: str,
    filter_pattern: str,
    confirm_each: bool,
    suppress_propagation: bool,
    max_concurrency: Optional[int],
    log_path: Optional[Path],
    secret_source: str,
    report_path: Optional[Path],
):
    """Rotate managed-account credentials.

    Exits 1 after an operator abort (Ctrl-C) even when every account that
    ran succeeded and the rest were skipped: an aborted batch is incomplete
    and never reports success.
    """
    setup_logging(log_path=log_path)
    console = Console()

    try:
        orchestrator = build_orchestrator(
            get_settings(),
            secret_source=secret_source,
            max_concurrency=max_concurrency,
        )
        with _abort_on_interrupt(orchestrator):
            summary = orchestrator.run(
                filter_pattern=filter_pattern,
                mode=RotationMode(mode),
                confirm_each=confirm_each,
                suppress_propagation=suppress_propagation,
            )
    except DirectoryUnavailable as e:
        logger.error(f"Directory unavailable: {e}")
        click.echo(f"Error: directory unavailable: {e}", err=True)
        ctx.exit(EXIT_FATAL)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_FATAL)

    render_summary(summary, console)

    if report_path is not None:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(json.dumps(summary.to_dict(), indent=2), encoding="utf-8")
        logger.info(f"Run report written to {report_path}")

    ctx.exit(summary.exit_code())


@click.command(name="list")
@click.option("--filter", "filter_pattern", default="*", show_default=True, help="Glob over account identifiers")
@click.pass_context
def list_command(ctx: click.Context, filter_pattern: str):
    """List managed accounts matching a filter (read-only)."""
    setup_logging(level=logging.WARNING)
    console = Console()

    try:
        directory, _ = build_directory(get_settings())
        accounts = directory.list(filter_pattern)
    except (DirectoryUnavailable, ConfigurationError) as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_FATAL)

    if not accounts:
        console.print(f"No accounts match '{filter_pattern}'")
        return

    table = Table(title=f"Managed Accounts ({len(accounts)})", show_header=True, header_style="bold magenta")
    table.add_column("Account", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Last Rotated", style="dim")
    for account in accounts:
        table.add_row(
            account.identifier,
            account.status,
            account.last_rotated_at.isoformat() if account.last_rotated_at else "never",
        )
    console.print(table)
