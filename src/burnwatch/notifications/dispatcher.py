"""
Routes anomaly reports to an organization's configured webhook channels.
"""

import asyncio
import logging

import httpx
from pydantic import BaseModel

from ..config.settings import BurnWatchConfig, get_config
from ..models import AnomalyReport, NotificationProfile
from ..storage.base import SyncStore
from .base import NotificationChannel
from .discord import DiscordNotifier
from .slack import SlackNotifier

logger = logging.getLogger(__name__)


class WebhookTestResult(BaseModel):
    ok: bool
    error: str | None = None


def _webhook_urls(profile: NotificationProfile) -> dict[str, str]:
    urls = {"slack": profile.slack_webhook_url, "discord": profile.discord_webhook_url}
    return {channel: url.strip() for channel, url in urls.items() if url and url.strip()}


class NotificationDispatcher:
    """Fans a report out to every configured channel with independent failure isolation."""

    def __init__(
        self,
        store: SyncStore,
        config: BurnWatchConfig | None = None,
        channels: dict[str, NotificationChannel] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store
        self.config = config or get_config()
        timeout = self.config.webhook_timeout
        self.channels = channels or {
            "slack": SlackNotifier(timeout=timeout, transport=transport),
            "discord": DiscordNotifier(timeout=timeout, transport=transport),
        }

    async def dispatch(self, organization_id: str, report: AnomalyReport) -> list[str]:
        """
        Send a report to the organization's webhooks.

        Returns:
            Names of the channels that accepted the report
        """
        profile = await self.store.get_notification_profile(organization_id)
        if profile is None:
            logger.warning(f"No notification profile for {organization_id}, skipping dispatch")
            return []
        if not profile.settings.anomaly:
            logger.info(f"Anomaly alerts disabled for {organization_id}")
            return []

        urls = {channel: url for channel, url in _webhook_urls(profile).items() if channel in self.channels}
        if not urls:
            logger.info(f"No webhooks configured for {organization_id}")
            return []

        report = report.model_copy(
            update={
                "organization_name": profile.organization_name,
                "dashboard_url": self.config.dashboard_url,
            }
        )

        names = list(urls)
        results = await asyncio.gather(
            *(self.channels[name].send_anomaly_alert(urls[name], report) for name in names),
            return_exceptions=True,
        )

        delivered = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error(f"❌ Failed to deliver anomaly alert to {name} for {organization_id}: {result}")
            else:
                delivered.append(name)

        if delivered:
            logger.info(f"📣 Anomaly alert for {organization_id} delivered to {', '.join(delivered)}")
        return delivered

    async def test_webhook(
        self, organization_id: str, channel: str, webhook_url: str | None = None
    ) -> WebhookTestResult:
        """Send a connection test message to the given URL or the saved one."""
        notifier = self.channels.get(channel)
        if notifier is None:
            return WebhookTestResult(ok=False, error=f"Unknown channel: {channel}")

        profile = await self.store.get_notification_profile(organization_id)
        if profile is None:
            return WebhookTestResult(ok=False, error="Organization not found")

        url = webhook_url.strip() if webhook_url and webhook_url.strip() else _webhook_urls(profile).get(channel)
        if not url:
            return WebhookTestResult(ok=False, error=f"{channel.capitalize()} webhook URL not configured")

        try:
            await notifier.send_test_message(url, profile.organization_name)
        except Exception as e:
            logger.warning(f"Webhook test for {channel} failed: {e}")
            return WebhookTestResult(ok=False, error=str(e) or "Unknown error")
        return WebhookTestResult(ok=True)
