"""Spend anomaly detection and the post-sync trigger."""

from .anomaly import AnomalyDetector, round_half_up
from .post_sync import PostSyncTrigger
