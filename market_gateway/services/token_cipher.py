"""Symmetric encryption for refresh tokens kept in the credential store."""

from __future__ import annotations

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class TokenCipher:
    """Fernet cipher keyed by the SHA-256 digest of a configured secret.

    The secret defaults to the upstream client secret, so rotating that
    credential leaves previously stored ciphertexts unreadable.
    """

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a refresh token for storage."""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored refresh token, raising ``ValueError`` on a key mismatch."""
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError(
                "Stored token could not be decrypted; was the secret rotated?"
            ) from exc
        return plaintext.decode("utf-8")

    def decrypt_or_none(self, ciphertext: str) -> Optional[str]:
        """Like ``decrypt`` but returns ``None`` for unreadable ciphertext.

        Used on read paths where the refresh token is auxiliary and a rotated
        key must not make the rest of the record unusable.
        """
        try:
            return self.decrypt(ciphertext)
        except ValueError:
            logger.warning("Discarding stored refresh token encrypted with another key")
            return None


__all__ = ["TokenCipher"]
