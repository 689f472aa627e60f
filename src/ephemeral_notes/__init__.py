"""Ephemeral notes: self-destructing encrypted messages.

A sender seals text under a fresh root key and shares a link whose fragment
carries the key. The recipient's viewer resolves the record, finds the key,
decrypts, and counts the view; once a view limit or expiry time is reached
the message is gone for good.

Example:
    >>> from ephemeral_notes import NotesService, NotesConfig, ExpirationPreset
    >>> notes = NotesService.from_config(NotesConfig(backend_type="memory"))
    >>> composed = notes.compose("meet at noon", preset=ExpirationPreset.VIEW_ONCE)
    >>> notes.view_url(composed.share_url).plaintext
    'meet at noon'
"""

from ephemeral_notes.backend import JsonFileBackend, KeyValueBackend, LocalStorage, MemoryBackend
from ephemeral_notes.config import BackendType, NotesConfig
from ephemeral_notes.coordinator import LifecycleCoordinator, ViewOutcome, ViewState
from ephemeral_notes.crypto import (
    MessageCipher,
    export_key,
    generate_root_key,
    import_key,
    open_sealed,
    seal,
)
from ephemeral_notes.errors import (
    CryptoError,
    DecryptionError,
    ErrorKind,
    InvalidCiphertextError,
    InvalidKeyFormatError,
    InvalidRecordError,
    MissingKeyError,
    NotesError,
    RecordExpiredError,
    RecordNotFoundError,
    StorageError,
)
from ephemeral_notes.gc import GarbageCollector, SweepReport
from ephemeral_notes.identity import Identity, StaticIdentity
from ephemeral_notes.locator import Locator, build_share_url
from ephemeral_notes.models import ExpirationPreset, Record, is_consumed
from ephemeral_notes.records import RecordStore
from ephemeral_notes.resolver import Match, MatchKind
from ephemeral_notes.service import ComposedMessage, NotesService
from ephemeral_notes.vault import KeyVault

__version__ = "0.1.0"
__all__ = [
    # Core
    "NotesService",
    "NotesConfig",
    "BackendType",
    "ComposedMessage",
    "Record",
    "ExpirationPreset",
    "is_consumed",
    # Crypto
    "MessageCipher",
    "generate_root_key",
    "export_key",
    "import_key",
    "seal",
    "open_sealed",
    # Storage
    "KeyValueBackend",
    "MemoryBackend",
    "JsonFileBackend",
    "LocalStorage",
    "RecordStore",
    "KeyVault",
    "Match",
    "MatchKind",
    # Lifecycle
    "LifecycleCoordinator",
    "ViewOutcome",
    "ViewState",
    "Locator",
    "build_share_url",
    "Identity",
    "StaticIdentity",
    "GarbageCollector",
    "SweepReport",
    # Exceptions
    "NotesError",
    "ErrorKind",
    "InvalidRecordError",
    "RecordNotFoundError",
    "RecordExpiredError",
    "MissingKeyError",
    "CryptoError",
    "InvalidKeyFormatError",
    "InvalidCiphertextError",
    "DecryptionError",
    "StorageError",
]
