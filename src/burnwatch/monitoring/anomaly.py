"""
Spend anomaly detection.

Compares today's spend per (provider, service) against the daily totals of
the preceding days and reports services whose spend is a statistical and
material outlier.
"""

import logging
import math
from collections import defaultdict
from datetime import date, timedelta

from ..config.settings import BurnWatchConfig, get_config
from ..models import AnomalyReport, ProviderAnomalyGroup, ServiceAnomaly, SpendRecord
from ..storage.base import SyncStore
from ..sync.window import start_of_day, utcnow

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class AnomalyDetector:
    """Detect per-service spend spikes for an organization."""

    def __init__(self, store: SyncStore | None, config: BurnWatchConfig | None = None):
        self.store = store
        self.config = config or get_config()
        self.history_days = self.config.anomaly_history_days
        self.min_history_days = self.config.anomaly_min_history_days
        self.z_threshold = self.config.anomaly_z_threshold
        self.spike_ratio = self.config.anomaly_spike_ratio
        self.min_spend_cents = self.config.anomaly_min_spend_cents

    async def detect(self, organization_id: str, today: date | None = None) -> AnomalyReport | None:
        """
        Build the anomaly report for an organization.

        Args:
            organization_id: Organization to analyze
            today: Day treated as today; the current UTC day when omitted

        Returns:
            The report, or None when no service is anomalous
        """
        if self.store is None:
            raise ValueError("Anomaly detection requires a store")

        today = today or start_of_day(utcnow())
        since = today - timedelta(days=self.history_days)
        records = await self.store.list_spend_records(organization_id, since, today)
        logger.debug(f"Analyzing {len(records)} spend rows for {organization_id} since {since}")

        report = self.analyze(records, today)
        if report is not None:
            logger.info(
                f"🚨 {report.service_count} anomalous service(s) for {organization_id}, "
                f"impact {report.total_impact_cents} cents"
            )
        return report

    def analyze(self, records: list[SpendRecord], today: date) -> AnomalyReport | None:
        """Run the detection over already loaded ledger rows."""
        # (provider, service) -> day -> cents
        daily: dict[tuple[str, str], dict[date, int]] = defaultdict(lambda: defaultdict(int))
        for record in records:
            daily[(record.provider.value, record.service_name)][record.date] += record.amount_cents

        providers: dict[str, ProviderAnomalyGroup] = {}
        for (provider, service_name), by_day in daily.items():
            history = [amount for day, amount in sorted(by_day.items()) if day != today]
            anomaly = self.check_service(service_name, history, by_day.get(today, 0))
            if anomaly is None:
                continue

            group = providers.setdefault(provider, ProviderAnomalyGroup())
            group.services.append(anomaly)
            group.provider_total_impact_cents += anomaly.impact_cents

        if not providers:
            return None

        for group in providers.values():
            group.services.sort(key=lambda service: service.current_spend, reverse=True)

        return AnomalyReport(
            total_impact_cents=sum(group.provider_total_impact_cents for group in providers.values()),
            providers=providers,
        )

    def check_service(self, name: str, history: list[int], today: int) -> ServiceAnomaly | None:
        """
        Decide whether today's spend is anomalous against its history.

        All of the following must hold: enough history, a positive mean and
        non-zero variance, today above ``mean + z_threshold * std``, above
        ``mean * spike_ratio`` and above ``min_spend_cents``.
        """
        if len(history) < self.min_history_days:
            return None

        mean = sum(history) / len(history)
        variance = sum((value - mean) ** 2 for value in history) / len(history)
        std = math.sqrt(variance)
        if mean <= 0 or std <= 0:
            return None

        if today <= mean + self.z_threshold * std:
            return None
        if today <= mean * self.spike_ratio:
            return None
        if today <= self.min_spend_cents:
            return None

        spike_percent = round_half_up((today - mean) / mean * 100)
        return ServiceAnomaly(
            name=name,
            current_spend=today,
            average_spend=round_half_up(mean),
            spike_percent=spike_percent,
            z_score=(today - mean) / std,
        )
