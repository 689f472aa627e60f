"""Message encryption engine.

Each message has one 256-bit root key that travels out-of-band (the share
link fragment). Every seal call derives a fresh AES-256-GCM sub-key from the
root key and a random salt, so no two calls share a key/nonce pair.

Design:
- Sub-key: PBKDF2-HMAC-SHA256(root_key, salt, 100000 iterations) -> 32 bytes
- Algorithm: AES-256-GCM authenticated encryption
- Salt: 16 bytes, nonce: 12 bytes, both fresh per call

Wire format (single base64url string, unpadded):
    [salt (16 bytes)] [nonce (12 bytes)] [ciphertext + auth tag (16 bytes)]

Key format:
    base64url(raw_key[32]), unpadded, '+' and '/' mapped to '-' and '_'
"""

import base64
import binascii
import logging
import re
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ephemeral_notes.errors import (
    DecryptionError,
    InvalidCiphertextError,
    InvalidKeyFormatError,
)

logger = logging.getLogger(__name__)


# Constants
KEY_SIZE = 32  # 256 bits
SALT_SIZE = 16  # 128 bits
NONCE_SIZE = 12  # 96 bits (standard for GCM)
AUTH_TAG_SIZE = 16  # 128 bits (standard for GCM)
MIN_SEALED_SIZE = SALT_SIZE + NONCE_SIZE + AUTH_TAG_SIZE  # 44 bytes
PBKDF2_ITERATIONS = 100_000

_B64URL_PATTERN = re.compile(r"^[A-Za-z0-9_-]*$")


def b64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url text."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    """Decode unpadded (or padded) base64url text.

    Only the canonical encoding of a byte string is accepted: the unused low
    bits of the final character must be zero, so every distinct text decodes
    to distinct bytes.

    Raises:
        ValueError: If the text contains characters outside the base64url
            alphabet, has an impossible length, or is not canonical.
    """
    stripped, data = _decode_loose(text)
    if b64url_encode(data) != stripped:
        raise ValueError("text is not canonical base64url")
    return data


def _decode_loose(text: str) -> tuple[str, bytes]:
    """Decode base64url, ignoring the unused bits of the final character.

    Returns the unpadded text alongside the decoded bytes so callers can
    check the encoding was canonical.
    """
    stripped = text.strip().rstrip("=")
    if not _B64URL_PATTERN.match(stripped):
        raise ValueError("text is not base64url")
    padding = "=" * (-len(stripped) % 4)
    try:
        return stripped, base64.urlsafe_b64decode(stripped + padding)
    except binascii.Error as e:
        raise ValueError(f"text is not base64url: {e}") from e


def generate_root_key() -> bytes:
    """Generate a new 256-bit root key.

    Returns:
        32 bytes of cryptographically secure random data.
    """
    return AESGCM.generate_key(bit_length=KEY_SIZE * 8)


def export_key(key: bytes) -> str:
    """Export a root key to its canonical text form for out-of-band transport."""
    if len(key) != KEY_SIZE:
        raise InvalidKeyFormatError(
            f"Key must be {KEY_SIZE} bytes, got {len(key)} bytes"
        )
    return b64url_encode(key)


def import_key(text: str) -> bytes:
    """Import a root key from its canonical text form.

    Raises:
        InvalidKeyFormatError: If the text is not base64url or does not
            decode to exactly 32 bytes.
    """
    try:
        key = b64url_decode(text)
    except ValueError as e:
        raise InvalidKeyFormatError(f"Invalid key encoding: {e}") from e

    if len(key) != KEY_SIZE:
        raise InvalidKeyFormatError(
            f"Key must decode to {KEY_SIZE} bytes, got {len(key)} bytes"
        )
    return key


def derive_sub_key(
    root_key: bytes, salt: bytes, iterations: int = PBKDF2_ITERATIONS
) -> bytes:
    """Derive the per-call AES-256-GCM key from a root key and salt."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(root_key)


class MessageCipher:
    """Seals and opens message text under a single root key.

    Example:
        >>> key = generate_root_key()
        >>> cipher = MessageCipher(key)
        >>> sealed = cipher.seal("meet at noon")
        >>> cipher.open(sealed)
        'meet at noon'

    The iteration count is configurable so tests can run quickly; stored
    messages must always be opened with the count they were sealed with.
    """

    def __init__(self, root_key: bytes, iterations: int = PBKDF2_ITERATIONS):
        if len(root_key) != KEY_SIZE:
            raise InvalidKeyFormatError(
                f"Root key must be {KEY_SIZE} bytes, got {len(root_key)} bytes"
            )
        self._root_key = root_key
        self._iterations = iterations

    @classmethod
    def from_text(cls, key_text: str, iterations: int = PBKDF2_ITERATIONS) -> "MessageCipher":
        """Build a cipher from an exported key string."""
        return cls(import_key(key_text), iterations=iterations)

    def seal(self, plaintext: str) -> str:
        """Encrypt text and return the base64url wire form."""
        salt = secrets.token_bytes(SALT_SIZE)
        nonce = secrets.token_bytes(NONCE_SIZE)

        sub_key = derive_sub_key(self._root_key, salt, self._iterations)
        ciphertext = AESGCM(sub_key).encrypt(nonce, plaintext.encode("utf-8"), None)

        return b64url_encode(salt + nonce + ciphertext)

    def open(self, sealed: str) -> str:
        """Decrypt the base64url wire form back to text.

        Raises:
            InvalidCiphertextError: If the text is not base64url or is too
                short to hold salt, nonce and tag.
            DecryptionError: If authentication fails for any reason, including
                altered bits that the base64url decoding would drop.
        """
        try:
            stripped, blob = _decode_loose(sealed)
        except ValueError as e:
            raise InvalidCiphertextError(f"Invalid ciphertext encoding: {e}") from e

        if len(blob) < MIN_SEALED_SIZE:
            raise InvalidCiphertextError(
                f"Sealed blob too small: {len(blob)} bytes, "
                f"minimum {MIN_SEALED_SIZE} bytes required"
            )
        if b64url_encode(blob) != stripped:
            # Non-canonical text has altered trailing bits
            raise DecryptionError("Failed to decrypt the message")

        salt = blob[:SALT_SIZE]
        nonce = blob[SALT_SIZE : SALT_SIZE + NONCE_SIZE]
        ciphertext = blob[SALT_SIZE + NONCE_SIZE :]

        sub_key = derive_sub_key(self._root_key, salt, self._iterations)
        try:
            plaintext = AESGCM(sub_key).decrypt(nonce, ciphertext, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError):
            # Same message for every cause so callers learn nothing about which part is wrong
            raise DecryptionError("Failed to decrypt the message") from None


def seal(plaintext: str, root_key: bytes, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Seal text under a root key (convenience wrapper)."""
    return MessageCipher(root_key, iterations=iterations).seal(plaintext)


def open_sealed(sealed: str, root_key: bytes, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Open sealed text under a root key (convenience wrapper)."""
    return MessageCipher(root_key, iterations=iterations).open(sealed)


def self_test(iterations: int = PBKDF2_ITERATIONS) -> bool:
    """Round-trip a sample string under a fresh key.

    Returns:
        True if the sample decrypted to itself.
    """
    sample = "ephemeral-notes self test ✓"
    cipher = MessageCipher(generate_root_key(), iterations=iterations)
    try:
        ok = cipher.open(cipher.seal(sample)) == sample
    except DecryptionError:
        ok = False
    if not ok:
        logger.error("Cipher self test failed")
    return ok
