"""CPF decryption for compliance checks stored encrypted by the provider.

The provider's mirror table keeps CPFs Fernet-encrypted with an ``enc:`` prefix.
The key comes from ``FIELD_ENCRYPTION_KEY``; without it encrypted CPFs can't be
read and matching falls back to phone and name.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from leadpipe.core.identity import is_cpf_key, normalize_cpf

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "enc:"


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""
    pass


class EncryptionService:
    """Service for encrypting and decrypting CPFs.

    Uses Fernet symmetric encryption which provides:
    - AES-128-CBC encryption
    - HMAC-SHA256 authentication
    """

    def __init__(self, key: str | None = None) -> None:
        """Initialize with an explicit key or the configured one."""
        self._fernet: Optional[Fernet] = None

        key_bytes = self._load_key(key)
        if key_bytes:
            self._fernet = Fernet(key_bytes)
        else:
            logger.warning("No encryption key configured - encrypted CPFs will not be readable")

    def _load_key(self, key: str | None) -> Optional[bytes]:
        """Validate the key; must be a 32-byte URL-safe base64-encoded key."""
        if key is None:
            from leadpipe.settings import settings

            key = settings.field_encryption_key

        if not key:
            return None

        try:
            key_bytes = key.encode()
            Fernet(key_bytes)
            return key_bytes
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid FIELD_ENCRYPTION_KEY format: {e}")
            return None

    @property
    def is_enabled(self) -> bool:
        """Check if encryption is enabled (key is configured)."""
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string, returning it with the ``enc:`` prefix.

        Raises:
            EncryptionError: If encryption is not enabled
        """
        if not plaintext:
            return plaintext
        if not self._fernet:
            raise EncryptionError("Cannot encrypt: encryption key not configured")
        return f"{ENCRYPTED_PREFIX}{self._fernet.encrypt(plaintext.encode()).decode()}"

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt an encrypted string.

        Values without the ``enc:`` prefix are returned unchanged.

        Raises:
            EncryptionError: If decryption fails
        """
        if not ciphertext or not ciphertext.startswith(ENCRYPTED_PREFIX):
            return ciphertext

        if not self._fernet:
            raise EncryptionError("Cannot decrypt: encryption key not configured")

        try:
            return self._fernet.decrypt(ciphertext[len(ENCRYPTED_PREFIX):].encode()).decode()
        except InvalidToken:
            raise EncryptionError("Failed to decrypt: invalid token or wrong key")

    def decrypt_cpf(self, ciphertext: str) -> str:
        """Decrypt and normalize an ``enc:``-prefixed CPF.

        Raises:
            EncryptionError: If the value is not encrypted, decryption fails or
                the plaintext is not a CPF
        """
        if not ciphertext or not ciphertext.startswith(ENCRYPTED_PREFIX):
            raise EncryptionError("CPF is not encrypted")
        cpf = normalize_cpf(self.decrypt(ciphertext))
        if not is_cpf_key(cpf):
            raise EncryptionError("Decrypted value is not a CPF")
        return cpf


_encryption_service: Optional[EncryptionService] = None


def get_encryption_service() -> EncryptionService:
    """Get the shared encryption service instance."""
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service


def generate_encryption_key() -> str:
    """Generate a new Fernet key suitable for FIELD_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode()
