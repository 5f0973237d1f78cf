"""
Abstract base provider class for billing data adapters.

Defines the interface that all cloud billing adapters must follow, the
error taxonomy they raise, and the factory that resolves an adapter for
an account's provider.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, field_validator, model_validator

from ..models import Account, CloudProvider
from ..security.vault import CredentialDecryptionError, CredentialVault

logger = logging.getLogger(__name__)


class SyncErrorKey(str, Enum):
    """Stable keys persisted in ``last_sync_error``; the UI translates them."""

    AWS_INVALID_CREDENTIALS = "aws-invalid-credentials-error"
    GCP_INVALID_CREDENTIALS = "gcp-invalid-credentials-error"
    GCP_BILLING_EXPORT = "gcp-billing-export-error"
    VERCEL_FORBIDDEN = "vercel-forbidden-error-sync"
    SYNC_INTERRUPTED = "sync-interrupted-error"


class FetchRange(BaseModel):
    """Day range for one adapter call: inclusive start, exclusive end."""

    start: date
    end: date

    @model_validator(mode="after")
    def validate_range(self):
        if self.start >= self.end:
            raise ValueError(f"Start date {self.start} must be before end date {self.end}")
        return self

    @classmethod
    def for_day(cls, day: date) -> "FetchRange":
        return cls(start=day, end=day + timedelta(days=1))

    @property
    def start_iso(self) -> str:
        return self.start.isoformat()

    @property
    def end_iso(self) -> str:
        return self.end.isoformat()


class DailySpendRow(BaseModel):
    """A spend row as returned by an adapter, before it becomes a ledger record."""

    date: date
    service_name: str
    amount_cents: int
    currency: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def truncate_to_day(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return v.date()
        return v

    @field_validator("service_name")
    @classmethod
    def validate_service_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Service name must not be empty")
        return stripped


class CloudProviderError(Exception):
    """Base exception for billing adapter errors."""

    pass


class ClassifiedSyncError(CloudProviderError):
    """An error with a stable key to persist instead of the raw message."""

    def __init__(self, message: str, sync_error_key: SyncErrorKey | str):
        super().__init__(message)
        self.sync_error_key = (
            sync_error_key.value if isinstance(sync_error_key, SyncErrorKey) else sync_error_key
        )


class InvalidCredentialsError(ClassifiedSyncError):
    """Credentials are missing, malformed, expired, revoked or not authorized."""

    pass


class BillingExportNotConfiguredError(ClassifiedSyncError):
    """The provider's billing export is not set up or not accessible."""

    pass


class APIError(CloudProviderError):
    """API-related errors."""

    def __init__(self, message: str, status_code: int | None = None, provider: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class ConfigurationError(CloudProviderError):
    """Configuration-related errors."""

    pass


def amount_to_cents(amount: Any) -> int:
    """
    Convert a decimal currency amount to integer cents.

    Rounds half up. Missing or non-numeric amounts count as zero.
    """
    if amount is None or amount == "":
        return 0
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return 0
    if not value.is_finite():
        return 0
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CloudCostProvider(ABC):
    """Abstract base class for billing data adapters."""

    def __init__(self, vault: CredentialVault | None, config: dict[str, Any] | None = None):
        """
        Initialize the adapter.

        Args:
            vault: Credential vault used to decrypt the account's credentials
            config: Provider-specific configuration dictionary
        """
        self.vault = vault
        self.config = config or {}
        self.provider_name = self._get_provider_name()

    @abstractmethod
    def _get_provider_name(self) -> str:
        """Return the provider name (aws, gcp, vercel, other)."""
        pass

    @abstractmethod
    async def fetch_daily_spend(self, account: Account, fetch_range: FetchRange) -> list[DailySpendRow]:
        """
        Fetch normalized daily spend rows for one account and day range.

        Args:
            account: Account whose credentials are used
            fetch_range: Inclusive start / exclusive end day range

        Returns:
            List of spend rows; empty when the provider has no data for the range

        Raises:
            ClassifiedSyncError: For authentication / authorization failures
            APIError: For unclassified API failures
        """
        pass

    @property
    def fake_billing(self) -> bool:
        return bool(self.config.get("fake_billing", False))

    @property
    def simulate_anomaly(self) -> bool:
        return bool(self.config.get("simulate_anomaly", False))

    @property
    def spike_multiplier(self) -> float:
        try:
            value = float(self.config.get("anomaly_spike_multiplier", 5))
        except (TypeError, ValueError):
            return 5.0
        return value if value >= 1 else 5.0

    def decrypt_credentials(self, account: Account, invalid_key: SyncErrorKey | None = None) -> dict[str, Any]:
        """
        Decrypt and parse the account's JSON credential payload.

        Args:
            account: Account holding the encrypted payload
            invalid_key: Sync error key to classify unreadable credentials with

        Returns:
            The decoded payload dictionary
        """
        if self.vault is None:
            raise ConfigurationError("No credential vault configured")

        try:
            plaintext = self.vault.decrypt(account.encrypted_credentials)
            payload = json.loads(plaintext)
        except (CredentialDecryptionError, json.JSONDecodeError) as e:
            message = f"{self.provider_name.upper()} credentials could not be read: {e}"
            if invalid_key is not None:
                raise InvalidCredentialsError(message, invalid_key) from e
            raise ConfigurationError(message) from e

        if not isinstance(payload, dict):
            raise ConfigurationError(f"{self.provider_name.upper()} credentials must be a JSON object")
        return payload

    def normalize_service_name(self, service_name: str | None, fallback: str) -> str:
        if not isinstance(service_name, str) or not service_name.strip():
            return fallback
        return service_name.strip()


class NoOpCostProvider(CloudCostProvider):
    """Adapter for providers without an implementation yet; always empty."""

    def _get_provider_name(self) -> str:
        return "other"

    async def fetch_daily_spend(self, account: Account, fetch_range: FetchRange) -> list[DailySpendRow]:
        logger.debug(
            f"No billing adapter for {account.provider.value}; returning no rows for "
            f"{fetch_range.start_iso}"
        )
        return []


class ProviderFactory:
    """Factory class for creating billing adapter instances."""

    _providers: dict[CloudProvider, type[CloudCostProvider]] = {}

    @classmethod
    def register_provider(cls, provider: CloudProvider, provider_class: type[CloudCostProvider]):
        """Register an adapter class for a provider."""
        cls._providers[CloudProvider(provider)] = provider_class

    @classmethod
    def create_provider(
        cls,
        provider: CloudProvider | str,
        vault: CredentialVault | None,
        config: dict[str, Any] | None = None,
    ) -> CloudCostProvider:
        """
        Create an adapter instance.

        Args:
            provider: Account provider
            vault: Credential vault handed to the adapter
            config: Provider configuration

        Returns:
            Adapter instance; providers without a registered adapter get a no-op one
        """
        try:
            key = CloudProvider(provider.upper() if isinstance(provider, str) else provider)
        except ValueError:
            key = CloudProvider.OTHER

        provider_class = cls._providers.get(key)
        if provider_class is None:
            return NoOpCostProvider(vault, config)
        return provider_class(vault, config)

    @classmethod
    def get_available_providers(cls) -> list[str]:
        """Get list of provider names with a registered adapter."""
        return [provider.value for provider in cls._providers]
