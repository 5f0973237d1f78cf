"""Credential protection utilities."""

from .vault import (
    CredentialDecryptionError,
    CredentialVault,
    CredentialVaultError,
    FernetCredentialVault,
)

__all__ = [
    "CredentialVault",
    "CredentialVaultError",
    "CredentialDecryptionError",
    "FernetCredentialVault",
]
