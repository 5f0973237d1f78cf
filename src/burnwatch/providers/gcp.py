"""
Google Cloud billing adapter.

Reads daily cost per service from the Cloud Billing export to BigQuery.
"""

import asyncio
import json
import logging
import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from google.api_core.exceptions import GoogleAPICallError
from google.auth.exceptions import GoogleAuthError
from google.cloud import bigquery
from google.oauth2 import service_account
from pydantic import BaseModel

from ..models import Account, CloudProvider
from ..security.vault import CredentialDecryptionError
from .base import (
    APIError,
    BillingExportNotConfiguredError,
    CloudCostProvider,
    DailySpendRow,
    FetchRange,
    InvalidCredentialsError,
    ProviderFactory,
    SyncErrorKey,
    amount_to_cents,
)
from .fake_billing import generate_fake_rows

logger = logging.getLogger(__name__)

DEFAULT_BILLING_DATASET_ID = "billing_export"

EXPORT_MISSING_PATTERN = re.compile(r"not found|does not exist|404|permission denied|403", re.IGNORECASE)
INVALID_CREDENTIAL_PATTERN = re.compile(r"invalid|credential|unauthorized|401", re.IGNORECASE)

BILLING_EXPORT_MESSAGE = (
    "GCP Billing Export to BigQuery is not set up or not accessible. "
    "Enable export and grant the service account access to the dataset."
)

BILLING_QUERY = """
    SELECT
        DATE(usage_start_time) AS usage_date,
        service.description AS service_description,
        SUM(cost) AS total_cost,
        MAX(currency) AS currency,
        MAX(IFNULL(currency_conversion_rate, 1)) AS currency_conversion_rate
    FROM `{table}`
    WHERE billing_account_id = @billingAccountId
        AND usage_start_time >= @startTime
        AND usage_start_time < @endTime
    GROUP BY usage_date, service_description
    ORDER BY usage_date, service_description
"""


class GCPCredentials(BaseModel):
    """Validated GCP credential payload."""

    billing_account_id: str
    project_id: str
    client_email: str
    service_account_info: dict[str, Any]

    @property
    def table_id(self) -> str:
        return f"gcp_billing_export_v1_{self.billing_account_id.replace('-', '_')}"


def _invalid(message: str) -> InvalidCredentialsError:
    return InvalidCredentialsError(f"GCP credentials: {message}", SyncErrorKey.GCP_INVALID_CREDENTIALS)


def parse_gcp_credentials(plaintext: str) -> GCPCredentials:
    """
    Parse and validate decrypted GCP credentials.

    The payload must hold ``billingAccountId`` and ``serviceAccountJson``, the
    latter being a service account key with ``type == "service_account"``,
    ``project_id``, ``private_key`` and ``client_email``.

    Raises:
        InvalidCredentialsError: On any malformed or missing field
    """
    try:
        payload = json.loads(plaintext)
    except json.JSONDecodeError:
        raise _invalid("invalid JSON")
    if not isinstance(payload, dict):
        raise _invalid("invalid JSON")

    billing_account_id = payload.get("billingAccountId")
    service_account_json = payload.get("serviceAccountJson")
    billing_account_id = billing_account_id.strip() if isinstance(billing_account_id, str) else ""
    service_account_json = service_account_json.strip() if isinstance(service_account_json, str) else ""
    if not billing_account_id or not service_account_json:
        raise _invalid("missing billingAccountId or serviceAccountJson")

    try:
        key = json.loads(service_account_json)
    except json.JSONDecodeError:
        raise _invalid("serviceAccountJson is not valid JSON")

    if not isinstance(key, dict) or key.get("type") != "service_account":
        raise _invalid('JSON must have "type": "service_account"')

    fields = {name: key.get(name) for name in ("project_id", "private_key", "client_email")}
    if not all(isinstance(value, str) and value for value in fields.values()):
        raise _invalid("service account JSON must include project_id, private_key, and client_email")

    return GCPCredentials(
        billing_account_id=billing_account_id,
        project_id=fields["project_id"],
        client_email=fields["client_email"],
        service_account_info=key,
    )


def _to_usd_cents(cost: Any, conversion_rate: Any) -> int:
    try:
        rate = Decimal(str(conversion_rate)) if conversion_rate is not None else Decimal(1)
    except (InvalidOperation, ValueError):
        rate = Decimal(1)
    if not rate.is_finite() or rate <= 0:
        rate = Decimal(1)
    try:
        value = Decimal(str(cost)) if cost is not None else Decimal(0)
    except (InvalidOperation, ValueError):
        return 0
    if not value.is_finite():
        return 0
    return amount_to_cents(value / rate)


class GCPCostProvider(CloudCostProvider):
    """GCP BigQuery billing export adapter."""

    def _get_provider_name(self) -> str:
        return "gcp"

    @property
    def billing_dataset_id(self) -> str:
        return self.config.get("billing_dataset_id") or DEFAULT_BILLING_DATASET_ID

    def _get_credentials(self, account: Account) -> GCPCredentials:
        if self.vault is None:
            raise _invalid("no credential vault configured")
        try:
            plaintext = self.vault.decrypt(account.encrypted_credentials)
        except CredentialDecryptionError as e:
            raise _invalid(f"could not be decrypted ({e})") from e
        return parse_gcp_credentials(plaintext)

    def _run_query(self, credentials: GCPCredentials, query: str, params: dict[str, str]) -> list[Any]:
        """Run the billing query synchronously and return the result rows."""
        sa_credentials = service_account.Credentials.from_service_account_info(
            credentials.service_account_info
        )
        client = bigquery.Client(credentials=sa_credentials, project=credentials.project_id)
        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter("billingAccountId", "STRING", params["billingAccountId"]),
                bigquery.ScalarQueryParameter("startTime", "TIMESTAMP", params["startTime"]),
                bigquery.ScalarQueryParameter("endTime", "TIMESTAMP", params["endTime"]),
            ]
        )
        try:
            return list(client.query(query, job_config=job_config).result())
        finally:
            client.close()

    async def fetch_daily_spend(self, account: Account, fetch_range: FetchRange) -> list[DailySpendRow]:
        if self.fake_billing:
            logger.debug(f"🔴 GCP: returning fake billing data for account {account.id}")
            return generate_fake_rows(
                CloudProvider.GCP,
                fetch_range,
                simulate_anomaly=self.simulate_anomaly,
                spike_multiplier=self.spike_multiplier,
                today=datetime.now(timezone.utc).date(),
            )

        credentials = self._get_credentials(account)
        full_table_id = f"{credentials.project_id}.{self.billing_dataset_id}.{credentials.table_id}"
        query = BILLING_QUERY.format(table=full_table_id)
        params = {
            "billingAccountId": credentials.billing_account_id,
            "startTime": f"{fetch_range.start_iso}T00:00:00Z",
            "endTime": f"{fetch_range.end_iso}T00:00:00Z",
        }

        try:
            rows = await asyncio.to_thread(self._run_query, credentials, query, params)
        except (GoogleAPICallError, GoogleAuthError, ValueError) as e:
            self._handle_gcp_error(e)
            raise

        return self._parse_bigquery_results(rows)

    def _handle_gcp_error(self, error: Exception):
        """Map BigQuery failures onto classified sync errors."""
        message = str(error) or "Unknown error"
        code = getattr(error, "code", None)

        if EXPORT_MISSING_PATTERN.search(message) or code in (403, 404):
            logger.warning(f"🔴 GCP: billing export unavailable: {message}")
            raise BillingExportNotConfiguredError(
                BILLING_EXPORT_MESSAGE, SyncErrorKey.GCP_BILLING_EXPORT
            ) from error
        if INVALID_CREDENTIAL_PATTERN.search(message) or code == 401:
            raise InvalidCredentialsError(message, SyncErrorKey.GCP_INVALID_CREDENTIALS) from error
        raise APIError(f"BigQuery cost query failed: {message}", status_code=code, provider=self.provider_name) from error

    def _parse_bigquery_results(self, rows: list[Any]) -> list[DailySpendRow]:
        results: list[DailySpendRow] = []

        for row in rows:
            usage_date = row.get("usage_date")
            if isinstance(usage_date, str):
                usage_date = date.fromisoformat(usage_date[:10])
            if not isinstance(usage_date, date):
                continue

            amount_cents = _to_usd_cents(row.get("total_cost"), row.get("currency_conversion_rate"))
            if amount_cents == 0:
                continue

            results.append(
                DailySpendRow(
                    date=usage_date,
                    service_name=self.normalize_service_name(row.get("service_description"), "Google Cloud"),
                    amount_cents=amount_cents,
                    currency="USD",
                )
            )

        return results


# Register the GCP adapter with the factory
ProviderFactory.register_provider(CloudProvider.GCP, GCPCostProvider)
