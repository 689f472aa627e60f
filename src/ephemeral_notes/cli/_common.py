"""Shared CLI helpers: logging setup and service construction."""

import logging

import typer
from rich.logging import RichHandler

from ephemeral_notes.cli._console import console
from ephemeral_notes.config import NotesConfig
from ephemeral_notes.identity import StaticIdentity
from ephemeral_notes.service import NotesService

logger = logging.getLogger(__name__)


def setup_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging with Rich handler."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def load_config(ctx: typer.Context) -> NotesConfig:
    """Resolve config from --config, environment, then --storage-dir."""
    if ctx.obj.get("config_file"):
        config = NotesConfig.from_yaml(ctx.obj["config_file"])
    else:
        config = NotesConfig.from_env()
    if ctx.obj.get("storage_dir"):
        config = config.model_copy(update={"storage_dir": ctx.obj["storage_dir"]})
    return config


def open_service(ctx: typer.Context) -> NotesService:
    """Initialize logging and open the configured workspace."""
    setup_logging(verbose=ctx.obj["verbose"], quiet=ctx.obj["quiet"])
    config = load_config(ctx)
    logger.debug(f"Using storage at {config.storage_dir} ({config.backend_type.value})")
    return NotesService.from_config(config, identity=StaticIdentity(ctx.obj.get("user")))
