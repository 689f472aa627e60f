from ephemeral_notes.cli import app

app()
