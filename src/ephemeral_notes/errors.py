"""Error taxonomy for ephemeral notes.

Every failure the engine, stores, and vault can produce is represented by a
``NotesError`` subclass tagged with an ``ErrorKind``. Platform exceptions
(``OSError``, ``json.JSONDecodeError``, ``InvalidTag``) are wrapped at the
boundary where they occur so callers only ever handle this hierarchy.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers."""

    INVALID_RECORD = "invalid_record"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    MISSING_KEY = "missing_key"
    INVALID_KEY_FORMAT = "invalid_key_format"
    INVALID_CIPHERTEXT = "invalid_ciphertext"
    DECRYPTION_FAILED = "decryption_failed"
    STORAGE_FAILURE = "storage_failure"


class NotesError(Exception):
    """Base exception for all ephemeral notes errors."""

    kind: ErrorKind = ErrorKind.STORAGE_FAILURE


class InvalidRecordError(NotesError):
    """Record is missing its id or ciphertext."""

    kind = ErrorKind.INVALID_RECORD


class RecordNotFoundError(NotesError):
    """No stored record matches the requested id."""

    kind = ErrorKind.NOT_FOUND


class RecordExpiredError(NotesError):
    """Record exists but its consumption policy has been exhausted."""

    kind = ErrorKind.EXPIRED


class MissingKeyError(NotesError):
    """No decryption key could be resolved for a record."""

    kind = ErrorKind.MISSING_KEY


class CryptoError(NotesError):
    """Base exception for cryptographic errors."""

    pass


class InvalidKeyFormatError(CryptoError):
    """Key text is not base64url or does not decode to 32 bytes."""

    kind = ErrorKind.INVALID_KEY_FORMAT


class InvalidCiphertextError(CryptoError):
    """Sealed text is not base64url or is shorter than salt + nonce + tag."""

    kind = ErrorKind.INVALID_CIPHERTEXT


class DecryptionError(CryptoError):
    """Authentication failed. Wrong key and tampered data are indistinguishable."""

    kind = ErrorKind.DECRYPTION_FAILED


class StorageError(NotesError):
    """Underlying persistence failed (I/O error or corrupt document)."""

    kind = ErrorKind.STORAGE_FAILURE
