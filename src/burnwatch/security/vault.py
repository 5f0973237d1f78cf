"""
Credential vault for provider secrets stored at rest.

Provider credentials are kept encrypted on the account row and only
decrypted by the adapter that needs them, right before calling the
billing API.
"""

import logging
from abc import ABC, abstractmethod

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class CredentialVaultError(Exception):
    """Base exception for credential vault errors."""

    pass


class CredentialDecryptionError(CredentialVaultError):
    """Stored ciphertext could not be decrypted with the configured key."""

    pass


class CredentialVault(ABC):
    """Opaque encrypt/decrypt pair for provider credentials."""

    @abstractmethod
    def encrypt(self, plaintext: str) -> str:
        pass

    @abstractmethod
    def decrypt(self, ciphertext: str) -> str:
        pass


class FernetCredentialVault(CredentialVault):
    """Credential vault backed by Fernet symmetric encryption."""

    def __init__(self, key: str | bytes):
        if not key:
            raise CredentialVaultError("Encryption key must be configured")
        try:
            self._fernet = Fernet(key)
        except ValueError as e:
            raise CredentialVaultError(f"Invalid encryption key: {e}") from e

    @classmethod
    def from_config(cls, config) -> "FernetCredentialVault":
        """Create a vault from ``credentials.encryption_key``."""
        key = config.encryption_key
        if not key:
            raise CredentialVaultError(
                "credentials.encryption_key is not set (BURNWATCH_CREDENTIALS__ENCRYPTION_KEY)"
            )
        return cls(key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            logger.debug(f"Credential decryption failed: {e!r}")
            raise CredentialDecryptionError("Stored credentials could not be decrypted") from e
