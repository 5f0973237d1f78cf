"""Webhook notification channels and the anomaly report dispatcher."""

from .base import NotificationChannel, NotificationError
from .discord import DiscordNotifier
from .dispatcher import NotificationDispatcher, WebhookTestResult
from .slack import SlackNotifier
