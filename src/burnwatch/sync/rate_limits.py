"""
Subscription-tier sync rules.

STARTER allows one sync per provider per organization at a time and one
per provider per rolling window. PRO only enforces a short per-account
cooldown.
"""

import logging
from datetime import datetime, timedelta, timezone

from ..models import Account, SubscriptionTier
from .errors import RateLimitReason, SyncRateLimitError

logger = logging.getLogger(__name__)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class SyncRateLimiter:
    """Decides whether a sync attempt may claim the account lock."""

    def __init__(self, starter_window: timedelta = timedelta(hours=24), pro_cooldown: timedelta = timedelta(minutes=5)):
        self.starter_window = starter_window
        self.pro_cooldown = pro_cooldown

    @classmethod
    def from_config(cls, config) -> "SyncRateLimiter":
        return cls(
            starter_window=timedelta(hours=config.starter_window_hours),
            pro_cooldown=timedelta(minutes=config.pro_cooldown_minutes),
        )

    def check(
        self,
        tier: SubscriptionTier,
        account: Account,
        provider_accounts: list[Account],
        now: datetime,
    ) -> None:
        """
        Apply the tier rules to a sync attempt.

        Args:
            tier: Organization subscription tier
            account: Account being synced
            provider_accounts: All accounts of the same organization and provider,
                read inside the lock transaction (may include ``account``)
            now: Current time

        Raises:
            SyncRateLimitError: When the attempt must not proceed
        """
        now = _as_utc(now)
        if tier == SubscriptionTier.PRO:
            self._check_pro(account, now)
        else:
            self._check_starter(account, provider_accounts, now)

    def _check_starter(self, account: Account, provider_accounts: list[Account], now: datetime):
        provider = account.provider.value
        in_flight = [other for other in provider_accounts if other.id != account.id and other.is_syncing]
        if in_flight:
            raise SyncRateLimitError(
                RateLimitReason.PROVIDER_SYNC_IN_PROGRESS,
                f"Another {provider} account is already syncing; the Starter plan allows one "
                f"sync per provider at a time",
            )

        synced = [_as_utc(other.last_synced_at) for other in provider_accounts if other.last_synced_at]
        if account.last_synced_at and all(other.id != account.id for other in provider_accounts):
            synced.append(_as_utc(account.last_synced_at))
        if not synced:
            return

        latest = max(synced)
        elapsed = now - latest
        if elapsed < self.starter_window:
            raise SyncRateLimitError(
                RateLimitReason.PROVIDER_DAILY_LIMIT,
                f"{provider} was last synced at {latest.isoformat()}; the Starter plan allows one "
                f"sync per provider every {self._describe(self.starter_window)}",
                retry_after=self.starter_window - elapsed,
            )

    def _check_pro(self, account: Account, now: datetime):
        if not account.last_synced_at:
            return
        elapsed = now - _as_utc(account.last_synced_at)
        if elapsed < self.pro_cooldown:
            raise SyncRateLimitError(
                RateLimitReason.ACCOUNT_COOLDOWN,
                f"Account {account.id} was synced {int(elapsed.total_seconds())}s ago; wait "
                f"{self._describe(self.pro_cooldown)} between syncs",
                retry_after=self.pro_cooldown - elapsed,
            )

    @staticmethod
    def _describe(window: timedelta) -> str:
        seconds = int(window.total_seconds())
        if seconds % 3600 == 0:
            return f"{seconds // 3600}h"
        if seconds % 60 == 0:
            return f"{seconds // 60}m"
        return f"{seconds}s"
