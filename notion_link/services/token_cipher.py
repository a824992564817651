"""Authenticated encryption for secrets stored at rest."""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from notion_link.core.errors import ConfigurationError, DecryptionError
from notion_link.models.oauth import EncryptedSecret

_KEY_BYTES = 32
_NONCE_BYTES = 12


class TokenCipherService:
    """Encrypt and decrypt sensitive strings with AES-256-GCM."""

    def __init__(self, *, key: bytes) -> None:
        if len(key) != _KEY_BYTES:
            raise ConfigurationError("Token encryption key must be exactly 32 bytes.")
        self._aead = AESGCM(key)

    @classmethod
    def from_base64_key(cls, encoded_key: str) -> "TokenCipherService":
        """Build a cipher from the base64 key held in configuration."""
        if not encoded_key:
            raise ConfigurationError("Token encryption key must be provided.")
        try:
            key = base64.b64decode(encoded_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError("Token encryption key is not valid base64.") from exc
        return cls(key=key)

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        """Encrypt a plaintext string under a fresh random nonce."""
        nonce = os.urandom(_NONCE_BYTES)
        ciphertext = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return EncryptedSecret(ciphertext=ciphertext, iv=nonce)

    def decrypt(self, ciphertext: bytes, iv: bytes) -> str:
        """Decrypt a stored secret; integrity failures raise ``DecryptionError``."""
        try:
            plaintext = self._aead.decrypt(bytes(iv), bytes(ciphertext), None)
            return plaintext.decode("utf-8")
        except (InvalidTag, ValueError) as exc:
            raise DecryptionError() from exc


__all__ = ["EncryptedSecret", "TokenCipherService"]
