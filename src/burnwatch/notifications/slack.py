"""
Slack incoming webhook channel using Block Kit messages.
"""

from typing import Any

from ..models import AnomalyReport
from .base import NotificationChannel, format_cents, provider_emoji


class SlackNotifier(NotificationChannel):
    name = "slack"

    def build_anomaly_payload(self, report: AnomalyReport) -> dict[str, Any]:
        description = (
            f"We detected cost anomalies in organization *{report.organization_name}*.\n"
            f"Estimated total impact: *{format_cents(report.total_impact_cents)}* above average."
        )

        blocks: list[dict[str, Any]] = [
            {"type": "header", "text": {"type": "plain_text", "text": "🚨 ⚠️ Spike detected!", "emoji": True}},
            {"type": "section", "text": {"type": "mrkdwn", "text": description}},
            {"type": "divider"},
        ]

        for provider_name, group in report.providers.items():
            services_text = "".join(
                f"• *{service.name}*: {format_cents(service.current_spend)} (+{service.spike_percent}%)\n"
                for service in group.services
            )
            if services_text:
                blocks.append(
                    {
                        "type": "section",
                        "text": {
                            "type": "mrkdwn",
                            "text": f"*{provider_emoji(provider_name)} {provider_name}*\n{services_text}",
                        },
                    }
                )

        blocks.extend(
            [
                {"type": "divider"},
                {
                    "type": "actions",
                    "elements": [
                        {
                            "type": "button",
                            "text": {"type": "plain_text", "text": "Open Dashboard", "emoji": True},
                            "url": report.dashboard_url,
                            "action_id": "open_dashboard",
                            "style": "danger",
                        }
                    ],
                },
                {"type": "context", "elements": [{"type": "mrkdwn", "text": "BurnWatch Intelligence"}]},
            ]
        )

        return {"blocks": blocks}

    def build_test_payload(self, organization_name: str | None = None) -> dict[str, Any]:
        org_line = f"\nOrganization: _{organization_name}_" if organization_name else ""
        return {
            "blocks": [
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"✅ *BurnWatch* – Webhook connection verified.{org_line}"},
                },
                {"type": "context", "elements": [{"type": "mrkdwn", "text": "Notification Engine • Test message"}]},
            ]
        }
