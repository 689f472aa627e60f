"""Unit tests for the message encryption engine."""

import pytest

from ephemeral_notes.crypto import (
    KEY_SIZE,
    MIN_SEALED_SIZE,
    NONCE_SIZE,
    PBKDF2_ITERATIONS,
    SALT_SIZE,
    MessageCipher,
    b64url_decode,
    b64url_encode,
    export_key,
    generate_root_key,
    import_key,
    open_sealed,
    seal,
    self_test,
)
from ephemeral_notes.errors import (
    CryptoError,
    DecryptionError,
    ErrorKind,
    InvalidCiphertextError,
    InvalidKeyFormatError,
)

B64URL_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


@pytest.fixture
def cipher(fast_iterations):
    return MessageCipher(generate_root_key(), iterations=fast_iterations)


class TestKeyFormat:
    """Tests for root key generation, export and import."""

    def test_generate_root_key_length(self):
        """Root keys are 256 bits."""
        assert len(generate_root_key()) == KEY_SIZE

    def test_generate_root_key_unique(self):
        assert generate_root_key() != generate_root_key()

    def test_export_is_unpadded_base64url(self):
        """Exported keys use the URL-safe alphabet without padding."""
        text = export_key(generate_root_key())
        assert len(text) == 43
        assert "=" not in text
        assert "+" not in text
        assert "/" not in text

    def test_export_import_roundtrip(self):
        key = generate_root_key()
        assert import_key(export_key(key)) == key

    def test_import_accepts_padding(self):
        key = generate_root_key()
        assert import_key(export_key(key) + "=") == key

    def test_export_rejects_wrong_length(self):
        with pytest.raises(InvalidKeyFormatError):
            export_key(b"\x00" * 16)

    def test_import_rejects_wrong_length(self):
        """A valid encoding of 16 bytes is not a key."""
        with pytest.raises(InvalidKeyFormatError, match="32 bytes"):
            import_key(b64url_encode(b"\x01" * 16))

    @pytest.mark.parametrize("text", ["not a key!", "abc+def/ghi", "a"])
    def test_import_rejects_bad_encoding(self, text):
        with pytest.raises(InvalidKeyFormatError):
            import_key(text)

    def test_invalid_key_format_kind(self):
        with pytest.raises(CryptoError) as exc_info:
            import_key("%%%")
        assert exc_info.value.kind is ErrorKind.INVALID_KEY_FORMAT

    def test_cipher_rejects_short_root_key(self):
        with pytest.raises(InvalidKeyFormatError):
            MessageCipher(b"short")


class TestBase64Url:
    """Tests for the base64url helpers."""

    def test_encode_strips_padding(self):
        assert b64url_encode(b"a") == "YQ"

    def test_decode_unpadded(self):
        assert b64url_decode("YQ") == b"a"

    def test_decode_url_safe_characters(self):
        data = bytes([0xFB, 0xFF, 0xBF])
        assert b64url_decode(b64url_encode(data)) == data
        assert "-" in b64url_encode(data) or "_" in b64url_encode(data)

    def test_decode_rejects_standard_alphabet(self):
        with pytest.raises(ValueError):
            b64url_decode("+/+/")

    @pytest.mark.parametrize("text", ["YR", "YWK"])
    def test_decode_rejects_non_canonical(self, text):
        """Set unused bits in the final character are not silently dropped."""
        with pytest.raises(ValueError, match="canonical"):
            b64url_decode(text)

    def test_import_rejects_non_canonical_key(self):
        text = export_key(generate_root_key())
        last = B64URL_ALPHABET.index(text[-1])
        altered = text[:-1] + B64URL_ALPHABET[last ^ 0x01]
        with pytest.raises(InvalidKeyFormatError):
            import_key(altered)


class TestSealOpen:
    """Tests for sealing and opening message text."""

    @pytest.mark.parametrize(
        "text",
        ["hello", "", "emoji 🔐 and accents é", "line one\nline two", "x" * 10_000],
    )
    def test_roundtrip(self, cipher, text):
        assert cipher.open(cipher.seal(text)) == text

    def test_sealed_layout_length(self, cipher):
        """Salt, nonce and tag add exactly 44 bytes."""
        blob = b64url_decode(cipher.seal("abcd"))
        assert len(blob) == SALT_SIZE + NONCE_SIZE + 4 + 16

    def test_fresh_salt_and_nonce_per_call(self, cipher):
        """Sealing the same text twice never repeats salt or nonce."""
        first = b64url_decode(cipher.seal("same"))
        second = b64url_decode(cipher.seal("same"))
        assert first[:SALT_SIZE] != second[:SALT_SIZE]
        assert first[SALT_SIZE:SALT_SIZE + NONCE_SIZE] != second[SALT_SIZE:SALT_SIZE + NONCE_SIZE]

    def test_sealed_is_unpadded_base64url(self, cipher):
        sealed = cipher.seal("padding check")
        assert "=" not in sealed

    def test_wrong_key_fails(self, cipher, fast_iterations):
        sealed = cipher.seal("secret")
        other = MessageCipher(generate_root_key(), iterations=fast_iterations)
        with pytest.raises(DecryptionError):
            other.open(sealed)

    def test_wrong_iterations_fail(self, fast_iterations):
        key = generate_root_key()
        sealed = MessageCipher(key, iterations=fast_iterations).seal("secret")
        with pytest.raises(DecryptionError):
            MessageCipher(key, iterations=fast_iterations + 1).open(sealed)

    def test_any_flipped_bit_fails(self, cipher):
        """Tampering with salt, nonce, ciphertext or tag is detected."""
        blob = bytearray(b64url_decode(cipher.seal("tamper me")))
        for index in range(len(blob)):
            tampered = bytearray(blob)
            tampered[index] ^= 0x01
            with pytest.raises(DecryptionError):
                cipher.open(b64url_encode(bytes(tampered)))

    @pytest.mark.parametrize("text", ["a", "ab", "abc"])
    def test_any_flipped_character_bit_fails(self, cipher, text):
        """Every bit of every character in the sealed text is authenticated.

        The three lengths leave 0, 4 and 2 unused bits in the final character.
        """
        sealed = cipher.seal(text)
        for index, char in enumerate(sealed):
            value = B64URL_ALPHABET.index(char)
            for bit in range(6):
                tampered = sealed[:index] + B64URL_ALPHABET[value ^ (1 << bit)] + sealed[index + 1 :]
                with pytest.raises(DecryptionError):
                    cipher.open(tampered)

    def test_failure_message_is_uniform(self, cipher, fast_iterations):
        """Wrong key and tampering surface the same error text."""
        sealed = cipher.seal("secret")
        blob = bytearray(b64url_decode(sealed))
        blob[-1] ^= 0xFF

        with pytest.raises(DecryptionError) as tampered:
            cipher.open(b64url_encode(bytes(blob)))
        with pytest.raises(DecryptionError) as wrong_key:
            MessageCipher(generate_root_key(), iterations=fast_iterations).open(sealed)
        assert str(tampered.value) == str(wrong_key.value)

    def test_too_short_is_invalid_ciphertext(self, cipher):
        with pytest.raises(InvalidCiphertextError, match="too small"):
            cipher.open(b64url_encode(b"\x00" * (MIN_SEALED_SIZE - 1)))

    def test_minimum_size_reaches_authentication(self, cipher):
        """A 44-byte blob is structurally valid and fails only on the tag."""
        with pytest.raises(DecryptionError):
            cipher.open(b64url_encode(b"\x00" * MIN_SEALED_SIZE))

    def test_non_base64_is_invalid_ciphertext(self, cipher):
        with pytest.raises(InvalidCiphertextError) as exc_info:
            cipher.open("this is not base64url!")
        assert exc_info.value.kind is ErrorKind.INVALID_CIPHERTEXT

    def test_from_text(self, fast_iterations):
        key = generate_root_key()
        sealed = seal("via text", key, iterations=fast_iterations)
        cipher = MessageCipher.from_text(export_key(key), iterations=fast_iterations)
        assert cipher.open(sealed) == "via text"

    def test_module_wrappers(self, fast_iterations):
        key = generate_root_key()
        sealed = seal("wrapped", key, iterations=fast_iterations)
        assert open_sealed(sealed, key, iterations=fast_iterations) == "wrapped"

    def test_default_iteration_count(self):
        """Production sealing uses 100000 iterations."""
        assert PBKDF2_ITERATIONS == 100_000
        key = generate_root_key()
        assert open_sealed(seal("slow path", key), key) == "slow path"


class TestSelfTest:
    def test_self_test_passes(self, fast_iterations):
        assert self_test(iterations=fast_iterations) is True
