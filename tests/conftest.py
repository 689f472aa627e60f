"""Shared pytest fixtures for ephemeral notes tests."""

import secrets
from datetime import datetime, timedelta, timezone

import pytest

from ephemeral_notes.backend import LocalStorage, MemoryBackend
from ephemeral_notes.config import BackendType, NotesConfig
from ephemeral_notes.crypto import MessageCipher, export_key, generate_root_key
from ephemeral_notes.models import Record
from ephemeral_notes.records import RecordStore
from ephemeral_notes.service import NotesService
from ephemeral_notes.vault import KeyVault

# PBKDF2 iterations for tests; production default is far slower
FAST_ITERATIONS = 1000

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_id() -> str:
    """A 64 hex character message id."""
    return secrets.token_hex(32)


def sealed_record(text: str = "hello", record_id: str = None, **fields):
    """Build a Record sealed under a fresh key.

    Returns:
        (record, key_text)
    """
    key = generate_root_key()
    cipher = MessageCipher(key, iterations=FAST_ITERATIONS)
    record = Record(
        id=record_id or make_id(),
        ciphertext=cipher.seal(text),
        **fields,
    )
    return record, export_key(key)


@pytest.fixture
def clock():
    """Clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def storage():
    """In-memory storage collections."""
    return LocalStorage.in_memory()


@pytest.fixture
def records(storage, clock):
    """RecordStore over in-memory storage."""
    return RecordStore(storage.records, clock=clock)


@pytest.fixture
def vault(storage, records):
    """KeyVault wired to the record store's delete cascade."""
    key_vault = KeyVault(storage.keys, records)
    records.add_delete_listener(key_vault.remove)
    return key_vault


@pytest.fixture
def config():
    """Memory-backed config with a fast KDF."""
    return NotesConfig(
        backend_type=BackendType.MEMORY,
        kdf_iterations=FAST_ITERATIONS,
        base_url="https://notes.example",
    )


@pytest.fixture
def service(storage, config, clock):
    """NotesService over in-memory storage and the fake clock."""
    return NotesService(storage, config=config, clock=clock)


@pytest.fixture
def memory_backend():
    return MemoryBackend()


@pytest.fixture
def fast_iterations():
    return FAST_ITERATIONS


@pytest.fixture
def new_id():
    """Factory for fresh message ids."""
    return make_id


@pytest.fixture
def sealed():
    """Factory for sealed records: ``sealed(text, record_id=None, **fields)``."""
    return sealed_record
