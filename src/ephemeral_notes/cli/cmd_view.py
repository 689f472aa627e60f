"""View command: decrypt a note from its share link."""

import typer

from ephemeral_notes.cli._app import app
from ephemeral_notes.cli._common import open_service
from ephemeral_notes.cli._console import print_err, render_outcome
from ephemeral_notes.errors import NotesError
from ephemeral_notes.locator import Locator


@app.command("view", help="Decrypt a note from its share link (counts one view).")
def view_cmd(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Share link, or a bare message id"),
    key: str = typer.Option(None, "--key", "-k", help="Key to use when the link has no fragment"),
    debug: bool = typer.Option(False, "--debug", help="Print the diagnostic trail"),
):
    """Resolve, decrypt and count a view of a note."""
    notes = open_service(ctx)

    if "/" in target or "#" in target:
        locator = Locator(target)
    else:
        locator = Locator(f"/view/{target}")
    if key and not locator.has_fragment:
        locator = Locator(f"{locator.url}#{key}")

    try:
        outcome = notes.view(locator.message_id, locator=locator)
    except NotesError as e:
        print_err(f"Could not record view: {e}")
        raise SystemExit(1)

    render_outcome(outcome, as_json=ctx.obj["json"], quiet=ctx.obj["quiet"], debug=debug)
    if not outcome.ok:
        raise SystemExit(1)
