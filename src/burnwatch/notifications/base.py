"""
Base class for webhook notification channels.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..models import AnomalyReport

logger = logging.getLogger(__name__)

PROVIDER_EMOJIS = {"AWS": "🟠", "VERCEL": "▲", "GCP": "🔵"}


class NotificationError(Exception):
    """A webhook delivery failed."""

    def __init__(self, message: str, status_code: int | None = None, channel: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.channel = channel


def format_cents(cents: int) -> str:
    return f"${cents / 100:.2f}"


def provider_emoji(provider: str) -> str:
    return PROVIDER_EMOJIS.get(provider.upper(), "☁️")


class NotificationChannel(ABC):
    """A webhook-backed destination for anomaly reports."""

    name: str = "webhook"

    def __init__(self, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self.transport = transport

    @abstractmethod
    def build_anomaly_payload(self, report: AnomalyReport) -> dict[str, Any]:
        pass

    @abstractmethod
    def build_test_payload(self, organization_name: str | None = None) -> dict[str, Any]:
        pass

    async def send_anomaly_alert(self, webhook_url: str, report: AnomalyReport):
        await self._post(webhook_url, self.build_anomaly_payload(report))

    async def send_test_message(self, webhook_url: str, organization_name: str | None = None):
        await self._post(webhook_url, self.build_test_payload(organization_name))

    async def _post(self, url: str, payload: dict[str, Any]):
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise NotificationError(f"{self.name.capitalize()} webhook request failed: {e}", channel=self.name) from e

        if response.is_error:
            logger.error(f"{self.name.capitalize()} webhook failed: {response.status_code} {response.text}")
            raise NotificationError(
                f"{self.name.capitalize()} webhook failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                channel=self.name,
            )
