"""Fernet encryption helpers for credentials at rest."""

import logging

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class SecretCipher:
    """Encrypts credential secrets before they touch the durable store."""

    def __init__(self, key: str | bytes):
        if not key:
            raise ValueError("FERNET_KEY is not configured, cannot encrypt/decrypt credentials")
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, plaintext: str) -> bytes:
        """Encrypt a string value. Returns bytes suitable for a BLOB column."""
        return self._fernet.encrypt(plaintext.encode("utf-8"))

    def decrypt(self, ciphertext: bytes) -> str:
        """Decrypt a stored value back to string. Returns empty string on failure."""
        if not ciphertext:
            return ""
        try:
            return self._fernet.decrypt(ciphertext).decode("utf-8")
        except InvalidToken:
            logger.error("Failed to decrypt credential: invalid Fernet key or corrupted data")
            return ""
