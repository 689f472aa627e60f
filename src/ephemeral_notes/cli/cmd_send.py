"""Send command: encrypt a note and print its share link."""

import sys

import typer

from ephemeral_notes.cli._app import app
from ephemeral_notes.cli._common import open_service
from ephemeral_notes.cli._console import print_err, render_composed
from ephemeral_notes.errors import NotesError
from ephemeral_notes.models import ExpirationPreset


@app.command("send", help="Encrypt a note and print its share link.")
def send_cmd(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Note text, or '-' to read stdin"),
    expires: ExpirationPreset = typer.Option(
        ExpirationPreset.ONE_HOUR,
        "--expires",
        "-e",
        help="view1, view3, 1h, 1d or 7d",
    ),
):
    """Seal the note under a fresh key; the key only travels in the link."""
    notes = open_service(ctx)

    if text == "-":
        text = sys.stdin.read()
    if not text:
        print_err("Refusing to send an empty note")
        raise SystemExit(1)

    try:
        composed = notes.compose(text, preset=expires)
    except NotesError as e:
        print_err(f"Could not save note: {e}")
        raise SystemExit(1)

    render_composed(composed, as_json=ctx.obj["json"], quiet=ctx.obj["quiet"])
