"""
Discord webhook channel using embeds.
"""

from datetime import datetime, timezone
from typing import Any

from ..models import AnomalyReport
from .base import NotificationChannel, format_cents, provider_emoji

# Discord expects decimal colors
ANOMALY_COLOR = 0xED4245
TEST_COLOR = 0x5865F2


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class DiscordNotifier(NotificationChannel):
    name = "discord"

    def build_anomaly_payload(self, report: AnomalyReport) -> dict[str, Any]:
        fields = []
        for provider_name, group in report.providers.items():
            services_text = "".join(
                f"• **{service.name}**: {format_cents(service.current_spend)} (+{service.spike_percent}%)\n"
                for service in group.services
            )
            if services_text:
                fields.append(
                    {
                        "name": f"{provider_emoji(provider_name)} {provider_name}",
                        "value": services_text,
                        "inline": False,
                    }
                )

        description = (
            f"We detected cost anomalies in organization **{report.organization_name}**.\n"
            f"Estimated total impact: **{format_cents(report.total_impact_cents)}** above average."
        )

        embed: dict[str, Any] = {
            "title": "🚨 COST ANOMALY",
            "description": description,
            "color": ANOMALY_COLOR,
            "fields": fields,
            "footer": {"text": "BurnWatch Intelligence"},
            "timestamp": _timestamp(),
        }
        if report.dashboard_url:
            embed["url"] = report.dashboard_url

        return {"embeds": [embed]}

    def build_test_payload(self, organization_name: str | None = None) -> dict[str, Any]:
        org_line = f"\n\nOrganization: **{organization_name}**" if organization_name else ""
        return {
            "embeds": [
                {
                    "title": "✅ Connection verified",
                    "description": f"BurnWatch – Webhook is configured correctly.{org_line}",
                    "color": TEST_COLOR,
                    "footer": {"text": "BurnWatch • Test message"},
                    "timestamp": _timestamp(),
                }
            ]
        }
