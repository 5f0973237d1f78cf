"""
Sync orchestrator.

Acquires the per-account sync lock under the subscription tier rules, then
backfills the daily spend ledger one UTC day at a time from the account's
billing adapter and records the outcome on the account.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from ..config.settings import BurnWatchConfig, get_config
from ..models import Account, SpendRecord, SubscriptionTier, SyncFailed, SyncResult, SyncSucceeded
from ..providers.base import (
    ClassifiedSyncError,
    CloudCostProvider,
    DailySpendRow,
    FetchRange,
    ProviderFactory,
    SyncErrorKey,
)
from ..security.vault import CredentialVault
from ..storage.base import SyncStore
from .errors import AccountNotFoundError, RateLimitReason, SyncRateLimitError
from .rate_limits import SyncRateLimiter
from .window import compute_sync_window, utcnow

logger = logging.getLogger(__name__)


def describe_sync_error(error: BaseException) -> str:
    """Value persisted in ``last_sync_error``: the stable key or the raw message."""
    if isinstance(error, ClassifiedSyncError):
        return error.sync_error_key
    message = str(error).strip()
    return message or type(error).__name__


class SyncOrchestrator:
    """Runs account syncs against the persistent store and the billing adapters."""

    def __init__(
        self,
        store: SyncStore,
        vault: CredentialVault | None,
        config: BurnWatchConfig | None = None,
        post_sync=None,
        provider_factory: type[ProviderFactory] = ProviderFactory,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            store: Persistent store for accounts and the spend ledger
            vault: Credential vault handed to the adapters
            config: Configuration; the global one when omitted
            post_sync: Optional hook with a ``schedule(organization_id)`` method,
                invoked after each successful sync
            provider_factory: Adapter registry
            clock: Source of the current UTC time
        """
        self.store = store
        self.vault = vault
        self.config = config or get_config()
        self.post_sync = post_sync
        self.provider_factory = provider_factory
        self.clock = clock
        self.rate_limiter = SyncRateLimiter.from_config(self.config)

    async def sync(self, organization_id: str, account_id: str) -> SyncResult:
        """
        Sync one account.

        Raises:
            AccountNotFoundError: The account is not in the organization
            SyncRateLimitError: The tier rules or a concurrent sync refused the lock

        Returns:
            ``SyncSucceeded`` or ``SyncFailed``; adapter and network failures
            are reported in the result, never raised
        """
        account = await self._acquire_lock(organization_id, account_id)
        logger.info(f"🔄 Syncing {account.provider.value} account {account.id} for {organization_id}")

        result = await self._backfill(account)

        if result.succeeded and self.post_sync is not None:
            self.post_sync.schedule(organization_id)

        return result

    async def _acquire_lock(self, organization_id: str, account_id: str) -> Account:
        attempts = max(1, self.config.claim_attempts)

        for attempt in range(1, attempts + 1):
            async with self.store.transaction() as tx:
                account = await tx.get_account(organization_id, account_id)
                if account is None:
                    raise AccountNotFoundError(organization_id, account_id)

                tier = await tx.get_subscription_tier(organization_id)
                now = self.clock()

                stale_minutes = self.config.stale_syncing_minutes
                if stale_minutes > 0:
                    released = await tx.release_stale_syncing(
                        organization_id,
                        account.provider,
                        now - timedelta(minutes=stale_minutes),
                        SyncErrorKey.SYNC_INTERRUPTED.value,
                    )
                    if released:
                        logger.warning(
                            f"Released {released} stale {account.provider.value} sync lock(s) "
                            f"in {organization_id}"
                        )

                provider_accounts = await tx.lock_provider_accounts(organization_id, account.provider)
                current = next((other for other in provider_accounts if other.id == account.id), account)

                try:
                    self.rate_limiter.check(tier, current, provider_accounts, now)
                except SyncRateLimitError as e:
                    logger.info(f"Sync of {account_id} refused ({e.reason.value}): {e.message}")
                    raise

                claimed = await tx.claim_sync(
                    current.id, now, exclusive_provider=tier == SubscriptionTier.STARTER
                )
                if claimed:
                    return current

            logger.info(f"Lost sync claim for {account_id} (attempt {attempt}/{attempts})")

        raise SyncRateLimitError(
            RateLimitReason.CLAIM_CONFLICT,
            f"Account {account_id} is already being synced",
        )

    def _create_provider(self, account: Account) -> CloudCostProvider:
        provider_config = self.config.get_provider_config(account.provider.value)
        return self.provider_factory.create_provider(account.provider, self.vault, provider_config)

    @staticmethod
    def _to_records(account: Account, rows: list[DailySpendRow]) -> list[SpendRecord]:
        """Normalize adapter rows into ledger records, one per day and service."""
        merged: dict[tuple, SpendRecord] = {}
        for row in rows:
            record = SpendRecord(
                organization_id=account.organization_id,
                account_id=account.id,
                date=row.date,
                provider=account.provider,
                service_name=row.service_name,
                amount_cents=row.amount_cents,
                currency=row.currency,
            )
            existing = merged.get(record.ledger_key)
            if existing is not None:
                if existing.currency != record.currency:
                    raise ValueError(
                        f"Mixed currencies for {record.service_name} on {record.date}: "
                        f"{existing.currency} and {record.currency}"
                    )
                existing.amount_cents += record.amount_cents
            else:
                merged[record.ledger_key] = record
        return list(merged.values())

    async def _backfill(self, account: Account) -> SyncResult:
        started_at = self.clock()
        rows_upserted = 0

        try:
            provider = self._create_provider(account)
            window = compute_sync_window(account.last_synced_at, started_at, self.config.backfill_days)
            logger.debug(
                f"Backfilling {account.id} from {window.cursor_start} to {window.today} "
                f"({window.day_count} days)"
            )

            for day in window.days():
                rows = await provider.fetch_daily_spend(account, FetchRange.for_day(day))
                records = self._to_records(account, rows)
                rows_upserted += await self.store.upsert_spend_records(records)

            await self.store.finish_sync_success(account.id, started_at)

        except asyncio.CancelledError:
            await self._record_failure(account, SyncErrorKey.SYNC_INTERRUPTED.value)
            raise
        except Exception as e:
            error = describe_sync_error(e)
            logger.warning(f"❌ Sync of {account.provider.value} account {account.id} failed: {error}")
            await self._record_failure(account, error)
            return SyncFailed(
                last_synced_at=account.last_synced_at,
                last_sync_error=error,
                rows_upserted=rows_upserted,
            )

        logger.info(f"✅ Synced account {account.id}: {rows_upserted} rows upserted")
        return SyncSucceeded(last_synced_at=started_at, rows_upserted=rows_upserted)

    async def _record_failure(self, account: Account, error: str):
        try:
            await self.store.finish_sync_failure(account.id, error)
        except Exception:
            logger.exception(f"Could not record sync failure for account {account.id}")
