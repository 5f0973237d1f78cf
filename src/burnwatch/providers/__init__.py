"""Billing adapters for AWS, GCP and Vercel."""

# Import adapter implementations to register them with ProviderFactory
from . import aws
from . import gcp
from . import vercel

# Make key classes available at package level
from .base import (
    APIError,
    BillingExportNotConfiguredError,
    ClassifiedSyncError,
    CloudCostProvider,
    CloudProviderError,
    ConfigurationError,
    DailySpendRow,
    FetchRange,
    InvalidCredentialsError,
    NoOpCostProvider,
    ProviderFactory,
    SyncErrorKey,
    amount_to_cents,
)
