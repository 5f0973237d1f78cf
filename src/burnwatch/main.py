"""
Main CLI interface for the BurnWatch sync and anomaly engine.

Provides commands to sync cloud accounts, run anomaly detection, test
notification webhooks and manage encrypted provider credentials.
"""

import asyncio
import json
import logging
import sys
from datetime import date

import click

from .config.settings import get_config, reload_config, settings
from .models import SyncResult
from .providers import ProviderFactory
from .security.vault import CredentialVaultError, FernetCredentialVault
from .services import ServiceContainer
from .sync.errors import AccountNotFoundError, SyncRateLimitError

# Set up logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity settings."""
    # Default is quiet: only warnings and results
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(logging.WARNING)

    # Configure SDK loggers to reduce noise
    noisy_loggers = [
        "boto3",
        "botocore",
        "urllib3",
        "google.auth",
        "google.cloud",
        "httpx",
        "httpcore",
        "asyncio",
    ]

    for logger_name in noisy_loggers:
        sdk_logger = logging.getLogger(logger_name)
        if verbose:
            sdk_logger.setLevel(logging.INFO)
        else:
            sdk_logger.setLevel(logging.ERROR)


def _format_result(account_id: str, result: SyncResult) -> str:
    if result.succeeded:
        return f"✅ {account_id}: SYNCED, {result.rows_upserted} rows upserted"
    return f"❌ {account_id}: SYNC_ERROR ({result.last_sync_error}), {result.rows_upserted} rows upserted"


@click.group()
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Path to configuration file")
@click.option("--database-url", help="PostgreSQL connection string override")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging and debug output")
@click.pass_context
def cli(ctx, config, database_url, verbose):
    """BurnWatch - sync cloud spend and alert on anomalies."""
    setup_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    try:
        if config:
            settings.load_file(path=config)
        burnwatch_config = get_config()
        burnwatch_config.override_from_cli({"database_url": database_url})
        ctx.obj["config"] = burnwatch_config
    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("organization_id", required=False)
@click.argument("account_id", required=False)
@click.option("--all", "sync_all", is_flag=True, help="Sync every account (optionally of one organization)")
@click.option("--organization", "-o", help="Limit --all to one organization")
@click.pass_context
def sync(ctx, organization_id, account_id, sync_all, organization):
    """Sync one account, or every account with --all."""
    config = ctx.obj["config"]

    if not sync_all and not (organization_id and account_id):
        click.echo("Provide ORGANIZATION_ID and ACCOUNT_ID, or use --all", err=True)
        sys.exit(2)

    async def _sync() -> int:
        services = await ServiceContainer.connect(config)
        failures = 0
        try:
            if sync_all:
                targets = [
                    (account.organization_id, account.id)
                    for account in await services.store.list_accounts(organization)
                ]
            else:
                targets = [(organization_id, account_id)]

            if not targets:
                click.echo("No accounts to sync")

            for org_id, acct_id in targets:
                try:
                    result = await services.orchestrator.sync(org_id, acct_id)
                except AccountNotFoundError as e:
                    click.echo(f"❌ {e}", err=True)
                    failures += 1
                    continue
                except SyncRateLimitError as e:
                    click.echo(f"⏳ {acct_id}: {e.message}")
                    if not sync_all:
                        failures += 1
                    continue

                click.echo(_format_result(acct_id, result))
                if not result.succeeded:
                    failures += 1
        finally:
            await services.close()
        return failures

    failures = asyncio.run(_sync())
    if failures:
        sys.exit(1)


@cli.command()
@click.argument("organization_id")
@click.option("--date", "day", type=click.DateTime(formats=["%Y-%m-%d"]), help="Day to analyze (default: today, UTC)")
@click.option("--notify", is_flag=True, help="Dispatch the report to the organization's webhooks")
@click.option(
    "--format", "output_format", type=click.Choice(["text", "json"]), default="text", help="Output format"
)
@click.pass_context
def detect(ctx, organization_id, day, notify, output_format):
    """Run anomaly detection for an organization."""
    config = ctx.obj["config"]
    analysis_day: date | None = day.date() if day else None

    async def _detect():
        services = await ServiceContainer.connect(config)
        try:
            report = await services.detector.detect(organization_id, today=analysis_day)
            delivered: list[str] = []
            if report is not None and notify:
                delivered = await services.dispatcher.dispatch(organization_id, report)
            return report, delivered
        finally:
            await services.close()

    report, delivered = asyncio.run(_detect())

    if output_format == "json":
        click.echo(json.dumps(report.model_dump() if report else None, indent=2))
        return

    if report is None:
        click.echo("✅ No anomalies detected")
        return

    click.echo(f"🚨 {report.service_count} anomalous service(s), impact ${report.total_impact_cents / 100:.2f}")
    for provider_name, group in report.providers.items():
        click.echo(f"\n{provider_name} (impact ${group.provider_total_impact_cents / 100:.2f})")
        for service in group.services:
            click.echo(
                f"  {service.name:<40} ${service.current_spend / 100:>10.2f}  "
                f"avg ${service.average_spend / 100:.2f}  +{service.spike_percent}%  z={service.z_score:.2f}"
            )
    if notify:
        click.echo(f"\nDelivered to: {', '.join(delivered) or 'none'}")


@cli.command()
@click.argument("organization_id")
@click.argument("channel", type=click.Choice(["slack", "discord"]))
@click.option("--url", "webhook_url", help="Webhook URL to test instead of the saved one")
@click.pass_context
def test_webhook(ctx, organization_id, channel, webhook_url):
    """Send a connection test message to a Slack or Discord webhook."""
    config = ctx.obj["config"]

    async def _test():
        services = await ServiceContainer.connect(config)
        try:
            return await services.dispatcher.test_webhook(organization_id, channel, webhook_url)
        finally:
            await services.close()

    result = asyncio.run(_test())
    if result.ok:
        click.echo(f"✅ {channel.capitalize()} webhook connection verified")
    else:
        click.echo(f"❌ {channel.capitalize()} webhook test failed: {result.error}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--generate-key", is_flag=True, help="Print a new encryption key and exit")
@click.option("--payload", help="Credential JSON to encrypt (read from stdin when omitted)")
@click.pass_context
def encrypt_credentials(ctx, generate_key, payload):
    """Encrypt a provider credential JSON payload for storage."""
    if generate_key:
        click.echo(FernetCredentialVault.generate_key())
        return

    raw = payload if payload is not None else click.get_text_stream("stdin").read()
    try:
        json.loads(raw)
    except json.JSONDecodeError as e:
        click.echo(f"❌ Credentials must be valid JSON: {e}", err=True)
        sys.exit(1)

    try:
        vault = FernetCredentialVault.from_config(ctx.obj["config"])
    except CredentialVaultError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    click.echo(vault.encrypt(raw.strip()))


@cli.command()
@click.pass_context
def config_info(ctx):
    """Display current configuration information."""
    config = ctx.obj["config"]

    click.echo("BurnWatch Configuration")
    click.echo("=" * 40)

    click.echo(f"Encryption key: {'set' if config.encryption_key else 'NOT SET'}")

    click.echo("\nSync:")
    click.echo(f"  Backfill days: {config.backfill_days}")
    click.echo(f"  Claim attempts: {config.claim_attempts}")
    stale = config.stale_syncing_minutes
    click.echo(f"  Stale lock recovery: {f'{stale} minutes' if stale else 'disabled'}")

    click.echo("\nRate limits:")
    click.echo(f"  Starter window: {config.starter_window_hours:g}h per provider")
    click.echo(f"  Pro cooldown: {config.pro_cooldown_minutes:g}m per account")

    click.echo("\nAnomaly detection:")
    click.echo(f"  History: {config.anomaly_history_days} days (minimum {config.anomaly_min_history_days})")
    click.echo(f"  Z-score threshold: {config.anomaly_z_threshold}")
    click.echo(f"  Spike ratio: {config.anomaly_spike_ratio}")
    click.echo(f"  Minimum spend: ${config.anomaly_min_spend_cents / 100:.2f}")

    click.echo("\nNotifications:")
    click.echo(f"  Dashboard URL: {config.dashboard_url}")
    click.echo(f"  Webhook timeout: {config.webhook_timeout:g}s")

    click.echo("\nProviders:")
    for provider in ProviderFactory.get_available_providers():
        provider_config = config.get_provider_config(provider)
        flags = []
        if provider_config.get("fake_billing"):
            flags.append("fake billing")
        if provider_config.get("simulate_anomaly"):
            flags.append("simulated anomaly")
        click.echo(f"  {provider.upper()}: {', '.join(flags) or 'live'}")


@cli.command()
@click.confirmation_option(prompt="Are you sure you want to reload configuration?")
@click.pass_context
def reload(ctx):
    """Reload configuration from files."""
    try:
        config = reload_config()
        ctx.obj["config"] = config
        click.echo("✅ Configuration reloaded successfully")
    except Exception as e:
        click.echo(f"❌ Failed to reload configuration: {e}", err=True)
        sys.exit(1)


@cli.command()
def version():
    """Display version information."""
    from . import __version__

    click.echo(f"BurnWatch v{__version__}")
    click.echo("Cloud spend sync and anomaly alerting for AWS, GCP and Vercel")


if __name__ == "__main__":
    cli()
