"""
Persistent store contract used by the sync orchestrator, the anomaly
detector and the notification dispatcher.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime

from ..models import Account, CloudProvider, NotificationProfile, SpendRecord, SubscriptionTier


class StoreTransaction(ABC):
    """
    Operations that run inside the sync lock transaction.

    Every read and write made through one instance commits or rolls back
    together; raising out of the transaction block discards all of them.
    """

    @abstractmethod
    async def get_account(self, organization_id: str, account_id: str) -> Account | None:
        """Load an account scoped to its organization."""
        pass

    @abstractmethod
    async def get_subscription_tier(self, organization_id: str) -> SubscriptionTier:
        """Read the organization's tier; a missing subscription means STARTER."""
        pass

    @abstractmethod
    async def release_stale_syncing(
        self, organization_id: str, provider: CloudProvider, started_before: datetime, error_key: str
    ) -> int:
        """Flip SYNCING accounts whose lock predates ``started_before`` to SYNC_ERROR."""
        pass

    @abstractmethod
    async def lock_provider_accounts(self, organization_id: str, provider: CloudProvider) -> list[Account]:
        """Lock and return every account of the organization for one provider."""
        pass

    @abstractmethod
    async def claim_sync(self, account_id: str, started_at: datetime, exclusive_provider: bool) -> bool:
        """
        Conditionally flip an account to SYNCING.

        Args:
            account_id: Account to claim
            started_at: Timestamp recorded as the lock start
            exclusive_provider: Also require that no other account of the same
                provider is SYNCING

        Returns:
            True when exactly one row was flipped
        """
        pass


class SyncStore(ABC):
    """Persistent store for accounts, the spend ledger and notification profiles."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]:
        """Open a transaction for the lock acquisition step."""
        pass

    @abstractmethod
    async def get_account(self, organization_id: str, account_id: str) -> Account | None:
        pass

    @abstractmethod
    async def list_accounts(self, organization_id: str | None = None) -> list[Account]:
        pass

    @abstractmethod
    async def upsert_spend_records(self, records: list[SpendRecord]) -> int:
        """
        Insert or update ledger rows on their natural key in one transaction.

        Returns:
            Number of rows written
        """
        pass

    @abstractmethod
    async def finish_sync_success(self, account_id: str, synced_at: datetime) -> None:
        pass

    @abstractmethod
    async def finish_sync_failure(self, account_id: str, error: str) -> None:
        pass

    @abstractmethod
    async def list_spend_records(self, organization_id: str, since: date, until: date) -> list[SpendRecord]:
        """Load ledger rows for an organization with ``since <= date <= until``."""
        pass

    @abstractmethod
    async def get_notification_profile(self, organization_id: str) -> NotificationProfile | None:
        pass

    async def close(self) -> None:
        """Release any resources held by the store."""
        return None
