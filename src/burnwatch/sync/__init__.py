"""Account sync: lock acquisition, tier rules and ledger backfill."""

from .errors import AccountNotFoundError, RateLimitReason, SyncError, SyncRateLimitError
from .orchestrator import SyncOrchestrator, describe_sync_error
from .rate_limits import SyncRateLimiter
from .window import compute_sync_window, start_of_day, utcnow
