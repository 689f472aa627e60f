"""Typer-based command-line interface.

Usage:
    python -m ephemeral_notes.cli --help
    python -m ephemeral_notes.cli send --help
"""

from ephemeral_notes.cli._app import app

# Register command modules (side-effect imports)
import ephemeral_notes.cli.cmd_send  # noqa: F401
import ephemeral_notes.cli.cmd_view  # noqa: F401
import ephemeral_notes.cli.cmd_manage  # noqa: F401

__all__ = ["app"]
