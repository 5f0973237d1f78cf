"""
Data models for the BurnWatch sync and anomaly engine.

Contains the Pydantic models shared by the sync orchestrator, the storage
layer, the anomaly detector and the notification channels.
"""

from collections.abc import Iterator
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class CloudProvider(str, Enum):
    """External billing sources an account can be linked to."""

    AWS = "AWS"
    GCP = "GCP"
    VERCEL = "VERCEL"
    OTHER = "OTHER"


class AccountStatus(str, Enum):
    """Sync state of a cloud account."""

    SYNCED = "SYNCED"
    SYNCING = "SYNCING"
    SYNC_ERROR = "SYNC_ERROR"


class SubscriptionTier(str, Enum):
    """Subscription plan governing how often accounts may sync."""

    STARTER = "STARTER"
    PRO = "PRO"


class Account(BaseModel):
    """One external cloud billing connection of an organization."""

    id: str
    organization_id: str
    provider: CloudProvider
    label: str | None = None
    encrypted_credentials: str = ""
    status: AccountStatus = AccountStatus.SYNCED
    last_sync_error: str | None = None
    last_synced_at: datetime | None = None
    sync_started_at: datetime | None = None

    @property
    def is_syncing(self) -> bool:
        return self.status == AccountStatus.SYNCING


class SpendRecord(BaseModel):
    """A normalized daily spend fact in the ledger."""

    organization_id: str
    account_id: str
    date: date
    provider: CloudProvider
    service_name: str
    amount_cents: int
    currency: str = "USD"

    @field_validator("date", mode="before")
    @classmethod
    def truncate_to_day(cls, v: Any) -> Any:
        """Ledger rows carry a UTC day only, never a time of day."""
        if isinstance(v, datetime):
            return v.date()
        return v

    @field_validator("currency", mode="before")
    @classmethod
    def default_currency(cls, v: str | None) -> str:
        if v is None or not str(v).strip():
            return "USD"
        return str(v).upper().strip()

    @property
    def ledger_key(self) -> tuple[str, str, date, str]:
        """Natural key the ledger upserts on."""
        return (self.organization_id, self.account_id, self.date, self.service_name)


class SyncWindow(BaseModel):
    """Day range still to be fetched by one sync run. Never persisted."""

    cursor_start: date
    today: date

    @model_validator(mode="after")
    def validate_order(self):
        if self.cursor_start > self.today:
            raise ValueError(f"Cursor start {self.cursor_start} is after today {self.today}")
        return self

    def days(self) -> Iterator[date]:
        """Yield every day from the cursor through today, ascending."""
        cursor = self.cursor_start
        while cursor <= self.today:
            yield cursor
            cursor += timedelta(days=1)

    @property
    def day_count(self) -> int:
        return (self.today - self.cursor_start).days + 1


class SyncResult(BaseModel):
    """Outcome of a sync run that acquired the account lock."""

    status: AccountStatus
    last_synced_at: datetime | None = None
    last_sync_error: str | None = None
    rows_upserted: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == AccountStatus.SYNCED


class SyncSucceeded(SyncResult):
    status: Literal[AccountStatus.SYNCED] = AccountStatus.SYNCED
    last_synced_at: datetime
    last_sync_error: None = None


class SyncFailed(SyncResult):
    status: Literal[AccountStatus.SYNC_ERROR] = AccountStatus.SYNC_ERROR
    last_sync_error: str


class ServiceAnomaly(BaseModel):
    """A service whose spend today is anomalous against its recent history."""

    name: str
    current_spend: int = Field(..., description="Today's spend in cents")
    average_spend: int = Field(..., description="Rounded historical mean in cents")
    spike_percent: int
    z_score: float

    @property
    def impact_cents(self) -> int:
        return self.current_spend - self.average_spend


class ProviderAnomalyGroup(BaseModel):
    """Anomalous services of one provider, most expensive first."""

    services: list[ServiceAnomaly] = Field(default_factory=list)
    provider_total_impact_cents: int = 0


class AnomalyReport(BaseModel):
    """Consolidated multi-provider anomaly report sent to notification channels."""

    organization_name: str = ""
    dashboard_url: str = ""
    total_impact_cents: int = 0
    providers: dict[str, ProviderAnomalyGroup] = Field(default_factory=dict)

    @property
    def service_count(self) -> int:
        return sum(len(group.services) for group in self.providers.values())


class NotificationSettings(BaseModel):
    """Per-organization notification preferences."""

    anomaly: bool = True
    daily_summary: bool = False
    limit_warning: bool = True

    @classmethod
    def parse(cls, raw: Any) -> "NotificationSettings":
        """Build settings from stored JSON, ignoring malformed values."""
        if not isinstance(raw, dict):
            return cls()
        defaults = cls()
        aliases = {"anomaly": "anomaly", "dailySummary": "daily_summary", "limitWarning": "limit_warning"}
        values = {}
        for key, field_name in aliases.items():
            value = raw.get(key, raw.get(field_name))
            values[field_name] = value if isinstance(value, bool) else getattr(defaults, field_name)
        return cls(**values)


class NotificationProfile(BaseModel):
    """Organization data needed to route an anomaly report."""

    organization_id: str
    organization_name: str
    slack_webhook_url: str | None = None
    discord_webhook_url: str | None = None
    settings: NotificationSettings = Field(default_factory=NotificationSettings)
