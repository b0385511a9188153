"""Two-pass AES-256-CBC cipher for PII columns.

The transform is deterministic: equal plaintexts under equal keys produce equal
ciphertexts, which is what lets the partner email column be queried by equality.
That also leaks equality/frequency of stored values.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from linkvault.core.config import Settings, get_settings
from linkvault.core.errors import ConfigError, DecryptionError, FieldCipherError


logger = logging.getLogger(__name__)

_KEY_BYTES = 32
_IV_BYTES = 16


@dataclass(frozen=True)
class KeyPair:
    key: bytes
    iv: bytes


@dataclass(frozen=True)
class FieldKeys:
    first: KeyPair
    second: KeyPair

    @classmethod
    def from_strings(cls, key1: str, iv1: str, key2: str, iv2: str) -> "FieldKeys":
        return cls(
            first=KeyPair(key=key1.encode("utf-8"), iv=iv1.encode("utf-8")),
            second=KeyPair(key=key2.encode("utf-8"), iv=iv2.encode("utf-8")),
        )


def keys_from_settings(settings: Settings | None = None) -> FieldKeys:
    # Build key material from settings and reject wrong sizes before any data is touched.
    resolved = settings or get_settings()
    values = (resolved.encryption_key1, resolved.iv_key1, resolved.encryption_key2, resolved.iv_key2)
    if any(not value for value in values):
        raise ConfigError("field cipher keys are not configured")
    keys = FieldKeys.from_strings(*values)  # type: ignore[arg-type]
    for pair in (keys.first, keys.second):
        if len(pair.key) != _KEY_BYTES or len(pair.iv) != _IV_BYTES:
            raise ConfigError("field cipher keys must be 32 bytes and ivs 16 bytes")
    return keys


def _cipher(pair: KeyPair) -> Cipher:
    return Cipher(algorithms.AES(pair.key), modes.CBC(pair.iv))


def _encrypt_once(text: str, pair: KeyPair) -> str:
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(text.encode("utf-8")) + padder.finalize()
    encryptor = _cipher(pair).encryptor()
    return (encryptor.update(padded) + encryptor.finalize()).hex()


def _decrypt_once(hex_text: str, pair: KeyPair) -> str:
    decryptor = _cipher(pair).decryptor()
    padded = decryptor.update(bytes.fromhex(hex_text)) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")


def encrypt_field(plaintext: str, keys: FieldKeys) -> str:
    """Encrypt with the first key pair, then encrypt that hex output with the second."""
    try:
        first = _encrypt_once(plaintext, keys.first)
        return _encrypt_once(first, keys.second)
    except ValueError as exc:
        raise FieldCipherError(f"field encryption failed: {exc}") from exc


def decrypt_field(ciphertext: str, keys: FieldKeys) -> str:
    """Undo pass two, then pass one. Any malformed input raises DecryptionError."""
    try:
        first = _decrypt_once(ciphertext, keys.second)
        return _decrypt_once(first, keys.first)
    except (ValueError, TypeError) as exc:
        # ValueError covers bad hex, bad padding, wrong key/iv size and UnicodeDecodeError.
        raise DecryptionError("field decryption failed") from exc


def decrypt_or_raw(value: str | None, keys: FieldKeys) -> str | None:
    """Decrypt a stored value, returning it unchanged when it is not ciphertext."""
    if value is None or value == "":
        return value
    try:
        return decrypt_field(value, keys)
    except DecryptionError:
        # Historical rows may still hold plaintext.
        logger.debug("field_decrypt_fallback length=%s", len(value))
        return value
