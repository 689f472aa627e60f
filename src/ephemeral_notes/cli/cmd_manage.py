"""Maintenance commands for stored notes and keys."""

import typer

from ephemeral_notes.cli._app import app
from ephemeral_notes.cli._common import open_service, setup_logging
from ephemeral_notes.cli._console import (
    console,
    print_err,
    print_json,
    print_ok,
    render_records,
    render_stats,
    render_sweep,
    stdout_console,
)
from ephemeral_notes.crypto import export_key, generate_root_key, self_test
from ephemeral_notes.errors import NotesError


@app.command("share", help="Share a note with another user id.")
def share_cmd(
    ctx: typer.Context,
    message_id: str = typer.Argument(..., help="Message id"),
    user_id: str = typer.Argument(..., help="User id to share with"),
):
    notes = open_service(ctx)
    try:
        record = notes.share(message_id, user_id)
    except NotesError as e:
        print_err(str(e))
        raise SystemExit(1)
    if ctx.obj["json"]:
        print_json({"id": record.id, "shared_with": sorted(record.shared_with)})
    elif not ctx.obj["quiet"]:
        print_ok(f"Shared {record.id[:12]}... with {user_id}")


@app.command("delete", help="Delete a note and its stored keys.")
def delete_cmd(
    ctx: typer.Context,
    message_id: str = typer.Argument(..., help="Message id"),
):
    notes = open_service(ctx)
    try:
        deleted = notes.delete(message_id)
    except NotesError as e:
        print_err(f"Delete failed: {e}")
        raise SystemExit(1)
    if not deleted:
        print_err(f"Message {message_id} not found")
        raise SystemExit(1)
    if not ctx.obj["quiet"]:
        print_ok(f"Deleted {message_id}")


@app.command("list", help="List notes owned by (or shared with) the --user.")
def list_cmd(
    ctx: typer.Context,
    shared: bool = typer.Option(False, "--shared", help="Notes shared with the user instead"),
):
    notes = open_service(ctx)
    user_id = notes.identity.current_user_id()
    if not user_id:
        print_err("--user is required to list notes")
        raise SystemExit(1)

    records = notes.records.list_shared_with(user_id) if shared else notes.records.list_owned(user_id)
    render_records(
        records,
        as_json=ctx.obj["json"],
        title="Shared with me" if shared else "My notes",
        is_consumed=notes.records.is_consumed,
    )


@app.command("sweep", help="Remove consumed notes and orphaned keys.")
def sweep_cmd(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Ignore the sweep interval"),
    clear_all: bool = typer.Option(False, "--all", help="Remove every note and key"),
):
    notes = open_service(ctx)
    if clear_all:
        removed = notes.gc.purge(preserve_live=False)
        if not ctx.obj["quiet"]:
            print_ok(f"Cleared {removed} notes and keys")
        return

    report = notes.gc.run(force=force)
    if report is None:
        if not ctx.obj["quiet"]:
            console.print("Skipped: last sweep was recent (use --force)")
        return
    render_sweep(report, as_json=ctx.obj["json"], quiet=ctx.obj["quiet"])


@app.command("stats", help="Show storage statistics.")
def stats_cmd(ctx: typer.Context):
    notes = open_service(ctx)
    render_stats(notes.stats(), as_json=ctx.obj["json"])


@app.command("keygen", help="Print a fresh root key and check the cipher.")
def keygen_cmd(ctx: typer.Context):
    setup_logging(verbose=ctx.obj["verbose"], quiet=ctx.obj["quiet"])
    if not self_test():
        print_err("Cipher self test failed")
        raise SystemExit(1)
    stdout_console.print(export_key(generate_root_key()))
