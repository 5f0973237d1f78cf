"""
PostgreSQL store backed by an asyncpg connection pool.
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any

import asyncpg

from ..models import (
    Account,
    AccountStatus,
    CloudProvider,
    NotificationProfile,
    NotificationSettings,
    SpendRecord,
    SubscriptionTier,
)
from .base import StoreTransaction, SyncStore

logger = logging.getLogger(__name__)

ACCOUNT_COLUMNS = """
    id, organization_id, provider, label, encrypted_credentials, status,
    last_sync_error, last_synced_at, sync_started_at
"""

UPSERT_SPEND_QUERY = """
    INSERT INTO daily_spend
    (organization_id, account_id, date, provider, service_name, amount_cents, currency)
    VALUES ($1, $2, $3, $4, $5, $6, $7)
    ON CONFLICT (organization_id, account_id, date, service_name)
    DO UPDATE SET amount_cents = EXCLUDED.amount_cents, currency = EXCLUDED.currency,
                  provider = EXCLUDED.provider
"""

CLAIM_SYNC_QUERY = """
    UPDATE cloud_accounts AS account
    SET status = 'SYNCING', last_sync_error = NULL, sync_started_at = $2
    WHERE account.id = $1
      AND account.status <> 'SYNCING'
      AND (
        NOT $3::boolean
        OR NOT EXISTS (
            SELECT 1 FROM cloud_accounts other
            WHERE other.organization_id = account.organization_id
              AND other.provider = account.provider
              AND other.id <> account.id
              AND other.status = 'SYNCING'
        )
      )
"""


def _rows_affected(status: str) -> int:
    """Parse the row count from an asyncpg command status such as ``UPDATE 1``."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def _account_from_row(row: Any) -> Account:
    return Account(
        id=str(row["id"]),
        organization_id=str(row["organization_id"]),
        provider=row["provider"],
        label=row["label"],
        encrypted_credentials=row["encrypted_credentials"] or "",
        status=row["status"],
        last_sync_error=row["last_sync_error"],
        last_synced_at=row["last_synced_at"],
        sync_started_at=row["sync_started_at"],
    )


class PostgresTransaction(StoreTransaction):
    """Lock-step operations bound to one connection inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def get_account(self, organization_id: str, account_id: str) -> Account | None:
        row = await self.conn.fetchrow(
            f"SELECT {ACCOUNT_COLUMNS} FROM cloud_accounts WHERE id = $1 AND organization_id = $2",
            account_id,
            organization_id,
        )
        return _account_from_row(row) if row else None

    async def get_subscription_tier(self, organization_id: str) -> SubscriptionTier:
        tier = await self.conn.fetchval(
            "SELECT tier FROM subscriptions WHERE organization_id = $1", organization_id
        )
        try:
            return SubscriptionTier(tier) if tier else SubscriptionTier.STARTER
        except ValueError:
            logger.warning(f"Unknown subscription tier {tier!r} for {organization_id}, using STARTER")
            return SubscriptionTier.STARTER

    async def release_stale_syncing(
        self, organization_id: str, provider: CloudProvider, started_before: datetime, error_key: str
    ) -> int:
        status = await self.conn.execute(
            """
            UPDATE cloud_accounts
            SET status = 'SYNC_ERROR', last_sync_error = $4, sync_started_at = NULL
            WHERE organization_id = $1 AND provider = $2 AND status = 'SYNCING'
              AND (sync_started_at IS NULL OR sync_started_at < $3)
            """,
            organization_id,
            CloudProvider(provider).value,
            started_before,
            error_key,
        )
        return _rows_affected(status)

    async def lock_provider_accounts(self, organization_id: str, provider: CloudProvider) -> list[Account]:
        rows = await self.conn.fetch(
            f"""
            SELECT {ACCOUNT_COLUMNS} FROM cloud_accounts
            WHERE organization_id = $1 AND provider = $2
            ORDER BY id
            FOR UPDATE
            """,
            organization_id,
            CloudProvider(provider).value,
        )
        return [_account_from_row(row) for row in rows]

    async def claim_sync(self, account_id: str, started_at: datetime, exclusive_provider: bool) -> bool:
        status = await self.conn.execute(CLAIM_SYNC_QUERY, account_id, started_at, exclusive_provider)
        return _rows_affected(status) == 1


class PostgresStore(SyncStore):
    """asyncpg implementation of the persistent store."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @classmethod
    async def connect(cls, database_url: str, min_size: int = 2, max_size: int = 10) -> "PostgresStore":
        logger.info("Connecting to database...")
        pool = await asyncpg.create_pool(database_url, min_size=min_size, max_size=max_size)
        return cls(pool)

    async def close(self) -> None:
        if self.pool:
            await self.pool.close()

    @asynccontextmanager
    async def transaction(self):
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresTransaction(conn)

    async def get_account(self, organization_id: str, account_id: str) -> Account | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {ACCOUNT_COLUMNS} FROM cloud_accounts WHERE id = $1 AND organization_id = $2",
                account_id,
                organization_id,
            )
        return _account_from_row(row) if row else None

    async def list_accounts(self, organization_id: str | None = None) -> list[Account]:
        async with self.pool.acquire() as conn:
            if organization_id is None:
                rows = await conn.fetch(
                    f"SELECT {ACCOUNT_COLUMNS} FROM cloud_accounts ORDER BY organization_id, provider, id"
                )
            else:
                rows = await conn.fetch(
                    f"""
                    SELECT {ACCOUNT_COLUMNS} FROM cloud_accounts
                    WHERE organization_id = $1 ORDER BY provider, id
                    """,
                    organization_id,
                )
        return [_account_from_row(row) for row in rows]

    async def upsert_spend_records(self, records: list[SpendRecord]) -> int:
        if not records:
            return 0

        args = [
            (
                record.organization_id,
                record.account_id,
                record.date,
                record.provider.value,
                record.service_name,
                record.amount_cents,
                record.currency,
            )
            for record in records
        ]

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(UPSERT_SPEND_QUERY, args)

        logger.debug(f"Upserted {len(records)} spend rows")
        return len(records)

    async def finish_sync_success(self, account_id: str, synced_at: datetime) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE cloud_accounts
                SET status = $2, last_synced_at = $3, last_sync_error = NULL, sync_started_at = NULL
                WHERE id = $1
                """,
                account_id,
                AccountStatus.SYNCED.value,
                synced_at,
            )

    async def finish_sync_failure(self, account_id: str, error: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE cloud_accounts
                SET status = $2, last_sync_error = $3, sync_started_at = NULL
                WHERE id = $1
                """,
                account_id,
                AccountStatus.SYNC_ERROR.value,
                error,
            )

    async def list_spend_records(self, organization_id: str, since: date, until: date) -> list[SpendRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT organization_id, account_id, date, provider, service_name, amount_cents, currency
                FROM daily_spend
                WHERE organization_id = $1 AND date >= $2 AND date <= $3
                ORDER BY date, provider, service_name
                """,
                organization_id,
                since,
                until,
            )
        return [
            SpendRecord(
                organization_id=str(row["organization_id"]),
                account_id=str(row["account_id"]),
                date=row["date"],
                provider=row["provider"],
                service_name=row["service_name"],
                amount_cents=int(row["amount_cents"]),
                currency=row["currency"],
            )
            for row in rows
        ]

    async def get_notification_profile(self, organization_id: str) -> NotificationProfile | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, name, slack_webhook_url, discord_webhook_url, notification_settings
                FROM organizations WHERE id = $1
                """,
                organization_id,
            )
        if not row:
            return None

        raw_settings = row["notification_settings"]
        if isinstance(raw_settings, str):
            try:
                raw_settings = json.loads(raw_settings)
            except json.JSONDecodeError:
                logger.warning(f"Malformed notification settings for {organization_id}, using defaults")
                raw_settings = None

        return NotificationProfile(
            organization_id=str(row["id"]),
            organization_name=row["name"] or "",
            slack_webhook_url=row["slack_webhook_url"],
            discord_webhook_url=row["discord_webhook_url"],
            settings=NotificationSettings.parse(raw_settings),
        )

