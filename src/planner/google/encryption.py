"""
AES-256-GCM encryption for OAuth tokens at rest.

Ciphertext format: ``<nonce hex>.<auth tag hex>.<ciphertext hex>``.

A fresh random nonce is drawn for every call, so encrypting the same token
twice yields different ciphertexts. GCM authenticates the ciphertext:
tampered or truncated input raises TokenDecryptionError instead of
returning garbage.
"""
import os
import re
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from planner.config import get_settings
from planner.errors import EncryptionConfigError, TokenDecryptionError

NONCE_BYTES = 12
TAG_BYTES = 16

_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class TokenCipher:
    """Encrypts and decrypts token strings with a process-wide key.

    The key is validated on every use: a missing or malformed key fails
    fast and plaintext is never passed through.
    """

    def __init__(self, key_hex: Optional[str] = None):
        self._key_hex = key_hex

    @classmethod
    def from_settings(cls) -> "TokenCipher":
        return cls(get_settings().encryption_key)

    def _aead(self) -> AESGCM:
        if not self._key_hex or not _KEY_RE.match(self._key_hex):
            raise EncryptionConfigError(
                "ENCRYPTION_KEY not properly configured. Must be 64 hex characters. "
                "Generate with: openssl rand -hex 32"
            )
        return AESGCM(bytes.fromhex(self._key_hex))

    def encrypt(self, plaintext: str) -> str:
        aead = self._aead()
        nonce = os.urandom(NONCE_BYTES)
        sealed = aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        body, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{nonce.hex()}.{tag.hex()}.{body.hex()}"

    def decrypt(self, ciphertext: str) -> str:
        aead = self._aead()
        parts = ciphertext.split(".")
        if len(parts) != 3 or not all(parts[:2]):
            raise TokenDecryptionError("Invalid ciphertext format")
        try:
            nonce, tag, body = (bytes.fromhex(p) for p in parts)
        except ValueError as exc:
            raise TokenDecryptionError("Invalid ciphertext encoding") from exc
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise TokenDecryptionError("Invalid ciphertext format")
        try:
            return aead.decrypt(nonce, body + tag, None).decode("utf-8")
        except InvalidTag as exc:
            raise TokenDecryptionError("Ciphertext failed authentication") from exc
