"""
Synthetic billing data for local development.

Adapters switch to these generators when ``providers.<name>.fake_billing`` is
enabled, so the sync and anomaly pipeline can run without real cloud
credentials. ``simulate_anomaly`` multiplies today's amounts so the detector
and notification channels can be exercised end to end.
"""

import random
from datetime import date

from ..models import CloudProvider
from .base import DailySpendRow, FetchRange, amount_to_cents

# Daily mean spend per service, in dollars
FAKE_SERVICE_MEANS: dict[CloudProvider, dict[str, float]] = {
    CloudProvider.AWS: {
        "Amazon Elastic Compute Cloud": 150.0,
        "Amazon Relational Database Service": 80.0,
        "Amazon Simple Storage Service": 32.0,
        "AWS Lambda": 12.0,
    },
    CloudProvider.GCP: {
        "Compute Engine": 120.0,
        "BigQuery": 45.0,
        "Cloud Run": 28.0,
        "Cloud Storage": 15.0,
    },
    CloudProvider.VERCEL: {
        "Serverless Functions": 18.0,
        "Edge Requests": 9.0,
        "Fast Data Transfer": 6.0,
        "Image Optimization": 3.0,
    },
}

STD_DEV_RATIO = 0.12


def random_around_mean(mean: float, rng: random.Random, std_dev_ratio: float = STD_DEV_RATIO) -> float:
    """Draw a non-negative value around ``mean`` from an approximate normal distribution."""
    # Sum of 12 uniforms minus 6 approximates a standard normal
    z = sum(rng.random() for _ in range(12)) - 6
    return max(0.0, mean + z * mean * std_dev_ratio)


def generate_fake_rows(
    provider: CloudProvider,
    fetch_range: FetchRange,
    simulate_anomaly: bool = False,
    spike_multiplier: float = 5.0,
    today: date | None = None,
    rng: random.Random | None = None,
) -> list[DailySpendRow]:
    """
    Generate synthetic daily spend rows for every day in the range.

    Args:
        provider: Provider whose service catalogue is used
        fetch_range: Days to generate (end exclusive)
        simulate_anomaly: Multiply ``today``'s amounts by ``spike_multiplier``
        spike_multiplier: Factor applied to today's amounts
        today: Day treated as today for anomaly simulation
        rng: Random source, injectable for reproducible output

    Returns:
        One row per service and day
    """
    rng = rng or random.Random()
    services = FAKE_SERVICE_MEANS.get(provider, {})
    rows: list[DailySpendRow] = []

    day = fetch_range.start
    while day < fetch_range.end:
        for service_name, mean in services.items():
            amount = random_around_mean(mean, rng)
            if simulate_anomaly and today is not None and day == today:
                amount *= spike_multiplier
            rows.append(
                DailySpendRow(
                    date=day,
                    service_name=service_name,
                    amount_cents=amount_to_cents(round(amount, 2)),
                    currency="USD",
                )
            )
        day = date.fromordinal(day.toordinal() + 1)

    return rows
