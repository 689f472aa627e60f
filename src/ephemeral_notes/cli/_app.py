"""Root Typer application with global options."""

from pathlib import Path

import typer

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug-level logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Warnings and errors only"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON to stdout"),
    storage_dir: Path = typer.Option(
        None, "--storage-dir", help="Storage directory (default: NOTES_STORAGE_DIR or .notes)"
    ),
    config_file: Path = typer.Option(None, "--config", help="YAML config file"),
    user: str = typer.Option(None, "--user", help="Act as this signed-in user id"),
):
    """Send and read self-destructing encrypted notes."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["json"] = json_output
    ctx.obj["storage_dir"] = storage_dir
    ctx.obj["config_file"] = config_file
    ctx.obj["user"] = user
