"""
Exceptions raised by the sync orchestrator to its callers.

Only these two kinds cross the ``sync`` boundary; every failure after the
lock is acquired is recorded on the account and returned as a result.
"""

from datetime import timedelta
from enum import Enum


class RateLimitReason(str, Enum):
    PROVIDER_SYNC_IN_PROGRESS = "provider_sync_in_progress"
    PROVIDER_DAILY_LIMIT = "provider_daily_limit"
    ACCOUNT_COOLDOWN = "account_cooldown"
    CLAIM_CONFLICT = "claim_conflict"


class SyncError(Exception):
    """Base exception for sync requests that were refused."""

    pass


class AccountNotFoundError(SyncError):
    """The account does not exist or belongs to another organization."""

    def __init__(self, organization_id: str, account_id: str):
        super().__init__(f"Cloud account {account_id} not found in organization {organization_id}")
        self.organization_id = organization_id
        self.account_id = account_id


class SyncRateLimitError(SyncError):
    """The sync was refused by the tier rules or lost the claim race."""

    def __init__(self, reason: RateLimitReason, message: str, retry_after: timedelta | None = None):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.retry_after = retry_after

    @property
    def retry_after_seconds(self) -> int | None:
        if self.retry_after is None:
            return None
        return max(0, int(self.retry_after.total_seconds() + 0.999))
