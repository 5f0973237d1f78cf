"""Sync window computation. All days are UTC calendar days."""

from datetime import date, datetime, timedelta, timezone

from ..models import SyncWindow


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(moment: datetime) -> date:
    """Return the UTC calendar day containing ``moment``; naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date()


def compute_sync_window(last_synced_at: datetime | None, now: datetime, backfill_days: int = 7) -> SyncWindow:
    """
    Compute the days a sync run must fetch.

    A never-synced account backfills ``backfill_days`` days before today.
    Otherwise the window restarts at the day of the last successful sync so
    that day is re-fetched with its final figures. A watermark in the future
    is clamped to today.
    """
    today = start_of_day(now)
    if last_synced_at is None:
        cursor_start = today - timedelta(days=backfill_days)
    else:
        cursor_start = min(start_of_day(last_synced_at), today)
    return SyncWindow(cursor_start=cursor_start, today=today)
