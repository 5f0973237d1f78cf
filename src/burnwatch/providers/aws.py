"""
AWS Cost Explorer billing adapter.

Fetches daily unblended cost grouped by service using the AWS Cost Explorer API.
"""

import asyncio
import logging
import re
from datetime import date, datetime, timezone
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..models import Account, CloudProvider
from .base import (
    APIError,
    CloudCostProvider,
    ConfigurationError,
    DailySpendRow,
    FetchRange,
    InvalidCredentialsError,
    ProviderFactory,
    SyncErrorKey,
    amount_to_cents,
)
from .fake_billing import generate_fake_rows

logger = logging.getLogger(__name__)

INVALID_CREDENTIAL_CODES = re.compile(
    r"UnrecognizedClientException|InvalidClientTokenId|InvalidSignatureException|AccessDeniedException",
    re.IGNORECASE,
)
INVALID_CREDENTIAL_MESSAGES = re.compile(
    r"invalid.*signature|not authorized|access denied|invalid client", re.IGNORECASE
)

DEFAULT_REGION = "us-east-1"


class AWSCostProvider(CloudCostProvider):
    """AWS Cost Explorer adapter."""

    def __init__(self, vault, config: dict[str, Any] | None = None):
        super().__init__(vault, config)
        # Cost Explorer is only served from us-east-1 regardless of the account's region
        self.client_config = Config(
            region_name=DEFAULT_REGION, retries={"max_attempts": 3, "mode": "adaptive"}
        )

    def _get_provider_name(self) -> str:
        return "aws"

    def _get_credentials(self, account: Account) -> dict[str, Any]:
        payload = self.decrypt_credentials(account, SyncErrorKey.AWS_INVALID_CREDENTIALS)
        if not payload.get("accessKeyId") or not payload.get("secretAccessKey"):
            raise ConfigurationError("AWS credentials: missing accessKeyId or secretAccessKey")
        return payload

    def _create_client(self, credentials: dict[str, Any]):
        """Create a Cost Explorer client for the account's access key."""
        session = boto3.session.Session(
            aws_access_key_id=credentials["accessKeyId"],
            aws_secret_access_key=credentials["secretAccessKey"],
            region_name=credentials.get("region") or DEFAULT_REGION,
        )
        return session.client("ce", config=self.client_config)

    @staticmethod
    def _prepare_request_params(fetch_range: FetchRange) -> dict[str, Any]:
        return {
            "TimePeriod": {"Start": fetch_range.start_iso, "End": fetch_range.end_iso},
            "Granularity": "DAILY",
            "Metrics": ["UnblendedCost"],
            "GroupBy": [{"Type": "DIMENSION", "Key": "SERVICE"}],
        }

    async def fetch_daily_spend(self, account: Account, fetch_range: FetchRange) -> list[DailySpendRow]:
        if self.fake_billing:
            logger.debug(f"🔵 AWS: returning fake billing data for account {account.id}")
            return generate_fake_rows(
                CloudProvider.AWS,
                fetch_range,
                simulate_anomaly=self.simulate_anomaly,
                spike_multiplier=self.spike_multiplier,
                today=datetime.now(timezone.utc).date(),
            )

        credentials = self._get_credentials(account)
        params = self._prepare_request_params(fetch_range)

        try:
            client = self._create_client(credentials)
            # boto3 is blocking; keep the event loop free
            response = await asyncio.to_thread(client.get_cost_and_usage, **params)
        except ClientError as e:
            self._handle_client_error(e)
            if e.response.get("Error", {}).get("Code") == "DataUnavailableException":
                logger.info(f"🔵 AWS: no cost data available yet for {fetch_range.start_iso}")
                return []
            raise APIError(f"AWS cost data retrieval failed: {e}", provider=self.provider_name) from e
        except BotoCoreError as e:
            raise APIError(f"AWS cost data retrieval failed: {e}", provider=self.provider_name) from e

        return self._parse_cost_response(response)

    def _handle_client_error(self, error: ClientError):
        """Raise a classified error when the failure is an authorization problem."""
        error_info = error.response.get("Error", {})
        code = error_info.get("Code", "")
        message = error_info.get("Message") or str(error)

        if INVALID_CREDENTIAL_CODES.search(code) or INVALID_CREDENTIAL_MESSAGES.search(message):
            logger.warning(f"🔵 AWS: credentials rejected ({code})")
            raise InvalidCredentialsError(
                message or "AWS credentials invalid or not authorized",
                SyncErrorKey.AWS_INVALID_CREDENTIALS,
            ) from error

    def _parse_cost_response(self, response: dict[str, Any]) -> list[DailySpendRow]:
        rows: list[DailySpendRow] = []

        for by_time in response.get("ResultsByTime", []) or []:
            period = by_time.get("TimePeriod") or {}
            date_str = period.get("Start") or period.get("End")
            if not date_str:
                continue
            day = date.fromisoformat(date_str[:10])

            for group in by_time.get("Groups", []) or []:
                keys = group.get("Keys") or []
                service_name = self.normalize_service_name(keys[0] if keys else None, "AWS")
                metric = (group.get("Metrics") or {}).get("UnblendedCost") or {}
                amount_cents = amount_to_cents(metric.get("Amount"))
                if amount_cents == 0:
                    continue

                rows.append(
                    DailySpendRow(
                        date=day,
                        service_name=service_name,
                        amount_cents=amount_cents,
                        currency=metric.get("Unit") or "USD",
                    )
                )

        return rows


# Register the AWS adapter with the factory
ProviderFactory.register_provider(CloudProvider.AWS, AWSCostProvider)
