from __future__ import annotations

"""
One-way identifier hashing and reversible field encryption.

Two separate contracts:
- IdentifierHasher: deterministic SHA-256 (hex) for userId/customerId/accountId
  so events can be correlated and erased without keeping the raw id. Stored ids
  carry a "sha256:" tag so a plaintext id that merely looks like a digest is
  still hashed.
- FieldCipher: AES-256-GCM for ip/userAgent/sessionId, which must sometimes be
  decrypted for abuse investigation. Token format: nonce_hex:tag_hex:ciphertext_hex.
"""

import binascii
import hashlib
import os
import re
import secrets
import threading
from dataclasses import dataclass
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from quietstats.core.errors import ConfigError, CryptoError


ENCRYPTION_KEY_ENV = "QUIETSTATS_ENCRYPTION_KEY"
KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16

HASH_TAG = "sha256:"

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


def generate_key_bytes() -> bytes:
    # AES-256 key
    return secrets.token_bytes(KEY_BYTES)


def key_id_from_key_bytes(key: bytes) -> str:
    return hashlib.sha256(key).hexdigest()[:16]


def is_hex_digest(value: Any) -> bool:
    return isinstance(value, str) and bool(_HEX_DIGEST.match(value))


def is_tagged_digest(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(HASH_TAG) and is_hex_digest(value[len(HASH_TAG) :])


@dataclass(frozen=True)
class KeyMaterial:
    key: bytes
    ephemeral: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.key, (bytes, bytearray)) or len(self.key) != KEY_BYTES:
            raise ConfigError("Encryption key must be 32 bytes (AES-256).")

    @property
    def key_id(self) -> str:
        return key_id_from_key_bytes(bytes(self.key))

    @classmethod
    def from_hex(cls, hex_key: str) -> "KeyMaterial":
        try:
            raw = bytes.fromhex(str(hex_key).strip())
        except ValueError as e:
            raise ConfigError("Encryption key must be hex encoded.") from e
        return cls(key=raw)


_key_lock = threading.Lock()
_process_key: Optional[KeyMaterial] = None


def init_key_material(*, hex_key: Optional[str] = None, allow_ephemeral: bool = False, logger=None) -> KeyMaterial:
    """
    Initialize the process-wide key once at startup.

    Resolution order: explicit hex_key, then $QUIETSTATS_ENCRYPTION_KEY. With neither,
    startup fails unless allow_ephemeral is set; an ephemeral key makes all
    ciphertext written by this process unreadable after a restart.
    """
    global _process_key  # noqa: PLW0603
    with _key_lock:
        if _process_key is not None:
            return _process_key
        raw = hex_key or os.environ.get(ENCRYPTION_KEY_ENV, "")
        if raw:
            km = KeyMaterial.from_hex(raw)
        elif allow_ephemeral:
            km = KeyMaterial(key=generate_key_bytes(), ephemeral=True)
            if logger:
                logger.warning("No encryption key configured; using an ephemeral key (stored ciphertext will not survive a restart).")
        else:
            raise ConfigError(f"Encryption key missing: set {ENCRYPTION_KEY_ENV} (64 hex chars).")
        _process_key = km
        return km


def get_key_material() -> KeyMaterial:
    if _process_key is None:
        raise ConfigError("Key material not initialized.")
    return _process_key


def reset_key_material() -> None:
    """Forget the process key (tests and key rotation tooling)."""
    global _process_key  # noqa: PLW0603
    with _key_lock:
        _process_key = None


class IdentifierHasher:
    def __init__(self, *, salt: str = ""):
        self.salt = str(salt or "")

    def hash_identifier(self, value: Any) -> str:
        data = (self.salt + str(value)).encode("utf-8")
        return hashlib.sha256(data).hexdigest()

    def tagged(self, value: Any) -> str:
        return HASH_TAG + self.hash_identifier(value)


class FieldCipher:
    def __init__(self, key_material: KeyMaterial):
        self._aes = AESGCM(bytes(key_material.key))

    def encrypt_bytes(self, plaintext: bytes) -> str:
        nonce = secrets.token_bytes(NONCE_BYTES)
        sealed = self._aes.encrypt(nonce, bytes(plaintext), None)
        ct, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{nonce.hex()}:{tag.hex()}:{ct.hex()}"

    def decrypt_bytes(self, token: str) -> bytes:
        parts = str(token or "").split(":")
        if len(parts) != 3:
            raise CryptoError("Malformed ciphertext token.")
        try:
            nonce = binascii.unhexlify(parts[0])
            tag = binascii.unhexlify(parts[1])
            ct = binascii.unhexlify(parts[2])
        except (binascii.Error, ValueError) as e:
            raise CryptoError("Malformed ciphertext token.") from e
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise CryptoError("Malformed ciphertext token.")
        try:
            return self._aes.decrypt(nonce, ct + tag, None)
        except InvalidTag as e:
            raise CryptoError("Ciphertext authentication failed.") from e

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        return self.encrypt_bytes(str(value).encode("utf-8"))

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        if token is None or token == "":
            return None
        raw = self.decrypt_bytes(token)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CryptoError("Decrypted payload is not valid text.") from e
