"""Rich consoles and renderers for notes, view outcomes and storage reports."""

from typing import Callable, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ephemeral_notes.coordinator import ViewOutcome
from ephemeral_notes.gc import SweepReport
from ephemeral_notes.models import Record
from ephemeral_notes.service import ComposedMessage, StorageStats

# Status and diagnostics to stderr so plaintext and JSON can be piped
console = Console(stderr=True)

# Plaintext, links and JSON to stdout (pipeable to jq)
stdout_console = Console()


def print_ok(msg: str) -> None:
    """Print a success message to stderr."""
    console.print(f"[green]✓[/green] {msg}")


def print_err(msg: str) -> None:
    """Print an error message to stderr."""
    console.print(f"[red]✗[/red] {msg}")


def print_warn(msg: str) -> None:
    """Print a warning message to stderr."""
    console.print(f"[yellow]![/yellow] {msg}")


def print_json(data) -> None:
    stdout_console.print_json(data=data)


def _views(record: Record) -> str:
    limit = record.max_views if record.max_views is not None else "∞"
    return f"{record.current_views}/{limit}"


def _expires(record: Record) -> str:
    return record.expires_at.isoformat() if record.expires_at else "never"


def render_composed(composed: ComposedMessage, *, as_json: bool, quiet: bool) -> None:
    """Print the share link of a freshly sealed note."""
    record = composed.record
    if as_json:
        print_json(
            {
                "id": record.id,
                "share_url": composed.share_url,
                "expires_at": record.expires_at.isoformat() if record.expires_at else None,
                "max_views": record.max_views,
            }
        )
        return

    stdout_console.print(composed.share_url, soft_wrap=True, markup=False, highlight=False)
    if quiet:
        return
    print_ok(f"Note {record.id[:12]}... saved")
    if record.max_views is not None:
        console.print(f"  Self-destructs after {record.max_views} view(s)")
    elif record.expires_at is not None:
        console.print(f"  Expires at {record.expires_at.isoformat()}")


def render_outcome(outcome: ViewOutcome, *, as_json: bool, quiet: bool, debug: bool) -> None:
    """Print a view outcome.

    Plaintext goes to stdout; expiry notices, errors and the diagnostic trail
    go to stderr. Diagnostics carry caller-supplied ids, so they are printed
    without markup.
    """
    if as_json:
        print_json(
            {
                "state": outcome.state.value,
                "plaintext": outcome.plaintext,
                "expiry_info": outcome.expiry_info,
                "error": outcome.error,
                "error_kind": outcome.error_kind.value if outcome.error_kind else None,
                "key_source": outcome.key_source.value if outcome.key_source else None,
                "diagnostics": [str(d) for d in outcome.diagnostics] if debug else [],
            }
        )
        return

    if outcome.ok:
        stdout_console.print(outcome.plaintext, markup=False, highlight=False)
        if outcome.expiry_info and not quiet:
            print_warn(outcome.expiry_info)
    else:
        print_err(outcome.error)

    if debug:
        for entry in outcome.diagnostics:
            console.print(str(entry), style="dim", markup=False, highlight=False)


def render_records(
    records: List[Record],
    *,
    as_json: bool,
    title: str,
    is_consumed: Callable[[Record], bool],
) -> None:
    """Print notes as a JSON array or a Rich table, newest first as given."""
    if as_json:
        print_json(
            [
                {
                    "id": r.id,
                    "created_at": r.created_at.isoformat(),
                    "current_views": r.current_views,
                    "max_views": r.max_views,
                    "expires_at": r.expires_at.isoformat() if r.expires_at else None,
                    "shared_with": sorted(r.shared_with),
                    "consumed": is_consumed(r),
                }
                for r in records
            ]
        )
        return

    if not records:
        console.print("No notes", style="dim")
        return

    table = Table(title=title, show_lines=False)
    table.add_column("id", no_wrap=True)
    table.add_column("created")
    table.add_column("views", justify="right")
    table.add_column("expires")
    table.add_column("status")
    for r in records:
        status = "[red]consumed[/red]" if is_consumed(r) else "[green]live[/green]"
        table.add_row(Text(r.id), r.created_at.isoformat(), _views(r), _expires(r), status)
    console.print(table)


def render_sweep(report: SweepReport, *, as_json: bool, quiet: bool) -> None:
    if as_json:
        print_json(
            {
                "expired_records": report.expired_records,
                "orphaned_keys": report.orphaned_keys,
                "errors": report.errors,
            }
        )
        return
    if quiet:
        return
    print_ok("Sweep complete")
    console.print(f"  Expired notes: {report.expired_records}")
    console.print(f"  Orphaned keys: {report.orphaned_keys}")
    for error in report.errors:
        console.print(f"  Error: {error}", style="yellow", markup=False)


def render_stats(stats: StorageStats, *, as_json: bool) -> None:
    if as_json:
        print_json({"messages": stats.messages, "keys": stats.keys})
        return
    body = f"Messages: {stats.messages}\nKey entries: {stats.keys}"
    console.print(Panel(body, title="Storage", border_style="blue"))
