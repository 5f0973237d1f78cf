"""
Vercel billing adapter.

Reads FOCUS-format charges (JSON Lines) from the Vercel billing API.
"""

import json
import logging
import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from ..models import Account, CloudProvider
from .base import (
    APIError,
    ClassifiedSyncError,
    CloudCostProvider,
    ConfigurationError,
    DailySpendRow,
    FetchRange,
    ProviderFactory,
    SyncErrorKey,
    amount_to_cents,
)
from .fake_billing import generate_fake_rows

logger = logging.getLogger(__name__)

VERCEL_BILLING_URL = "https://api.vercel.com/v1/billing/charges"
FORBIDDEN_MESSAGE_PATTERN = re.compile(r"not authorized|invalid.*token", re.IGNORECASE)

COST_FIELDS = ("BilledCost", "effectiveCost", "EffectiveCost", "total", "amount")
SERVICE_FIELDS = ("serviceName", "ServiceName", "name")


def charge_to_cents(value: int | float) -> int:
    """
    Convert a charge amount to cents.

    Integral amounts of 100 or more are taken to already be in cents.
    """
    if value == 0:
        return 0
    if abs(value) >= 100 and float(value).is_integer():
        return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return amount_to_cents(value)


def parse_charge_line(line: str) -> DailySpendRow | None:
    """Parse one JSON Lines charge; malformed or incomplete lines yield None."""
    trimmed = line.strip()
    if not trimmed:
        return None
    try:
        row = json.loads(trimmed)
    except json.JSONDecodeError:
        return None
    if not isinstance(row, dict):
        return None

    cost = next((row[field] for field in COST_FIELDS if row.get(field) is not None), None)
    if isinstance(cost, bool) or not isinstance(cost, (int, float)):
        return None

    date_str = row.get("ChargePeriodStart") or row.get("ChargePeriodEnd")
    if not isinstance(date_str, str):
        return None
    try:
        charged_at = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
    except ValueError:
        return None
    if charged_at.tzinfo is not None:
        charged_at = charged_at.astimezone(timezone.utc)

    service_name = next((row[field] for field in SERVICE_FIELDS if row.get(field) is not None), None)
    if not isinstance(service_name, str) or not service_name.strip():
        service_name = "Vercel"

    return DailySpendRow(
        date=charged_at.date(),
        service_name=service_name,
        amount_cents=charge_to_cents(cost),
        currency="USD",
    )


def parse_charges(text: str) -> list[DailySpendRow]:
    rows = []
    for line in text.split("\n"):
        parsed = parse_charge_line(line)
        if parsed is not None:
            rows.append(parsed)
    return rows


class VercelCostProvider(CloudCostProvider):
    """Vercel billing API adapter."""

    def __init__(self, vault, config: dict[str, Any] | None = None, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(vault, config)
        self.transport = transport
        self.billing_url = self.config.get("billing_url") or VERCEL_BILLING_URL
        self.timeout = float(self.config.get("timeout", 30))

    def _get_provider_name(self) -> str:
        return "vercel"

    def _get_token(self, account: Account) -> str:
        payload = self.decrypt_credentials(account, SyncErrorKey.VERCEL_FORBIDDEN)
        token = payload.get("token")
        if not token or not isinstance(token, str):
            raise ConfigurationError("Vercel credentials: missing token")
        return token

    async def fetch_daily_spend(self, account: Account, fetch_range: FetchRange) -> list[DailySpendRow]:
        if self.fake_billing:
            logger.debug(f"▲ Vercel: returning fake billing data for account {account.id}")
            return generate_fake_rows(
                CloudProvider.VERCEL,
                fetch_range,
                simulate_anomaly=self.simulate_anomaly,
                spike_multiplier=self.spike_multiplier,
                today=datetime.now(timezone.utc).date(),
            )

        token = self._get_token(account)
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        params = {"from": fetch_range.start_iso, "to": fetch_range.end_iso}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.billing_url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise APIError(f"Vercel billing API request failed: {e}", provider=self.provider_name) from e

        if response.status_code == 404:
            body = response.text
            if "costs_not_found" in body or "not found" in body.lower():
                logger.info(f"▲ Vercel: no charges for {fetch_range.start_iso}")
                return []

        if response.status_code == 403:
            self._handle_forbidden(response)

        if response.is_error:
            text = response.text
            detail = f" - {text[:200]}" if text else ""
            raise APIError(
                f"Vercel billing API error: {response.status_code} {response.reason_phrase}{detail}",
                status_code=response.status_code,
                provider=self.provider_name,
            )

        return parse_charges(response.text)

    def _handle_forbidden(self, response: httpx.Response):
        try:
            body = response.json()
        except ValueError:
            return
        error = body.get("error") if isinstance(body, dict) else None
        if not isinstance(error, dict):
            return

        message = error.get("message")
        if error.get("invalidToken") is True or (
            isinstance(message, str) and FORBIDDEN_MESSAGE_PATTERN.search(message)
        ):
            logger.warning("▲ Vercel: billing API rejected the token")
            raise ClassifiedSyncError(message or "Not authorized", SyncErrorKey.VERCEL_FORBIDDEN)


# Register the Vercel adapter with the factory
ProviderFactory.register_provider(CloudProvider.VERCEL, VercelCostProvider)
