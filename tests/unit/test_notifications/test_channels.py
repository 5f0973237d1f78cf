"""
Tests for the Slack and Discord webhook channels.
"""

import json

import httpx
import pytest

from burnwatch.models import AnomalyReport, ProviderAnomalyGroup, ServiceAnomaly
from burnwatch.notifications.base import NotificationError, format_cents, provider_emoji
from burnwatch.notifications.discord import ANOMALY_COLOR, DiscordNotifier
from burnwatch.notifications.slack import SlackNotifier

WEBHOOK_URL = "https://hooks.example.com/services/T000/B000/XXXX"


@pytest.fixture
def report():
    return AnomalyReport(
        organization_name="Acme",
        dashboard_url="https://app.burnwatch.test/dashboard",
        total_impact_cents=12345,
        providers={
            "AWS": ProviderAnomalyGroup(
                services=[
                    ServiceAnomaly(name="S3", current_spend=9000, average_spend=200, spike_percent=4400, z_score=88.0),
                    ServiceAnomaly(name="EC2", current_spend=5000, average_spend=1100, spike_percent=355, z_score=39.0),
                ],
                provider_total_impact_cents=12700,
            ),
            "VERCEL": ProviderAnomalyGroup(
                services=[
                    ServiceAnomaly(
                        name="Edge Requests", current_spend=845, average_spend=1200, spike_percent=30, z_score=2.5
                    )
                ],
                provider_total_impact_cents=-355,
            ),
        },
    )


def recording_transport(status_code=200, text="ok"):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, text=text)

    return httpx.MockTransport(handler), requests


class TestFormatting:
    """Test cases for shared formatting helpers."""

    @pytest.mark.parametrize("cents,expected", [(0, "$0.00"), (5, "$0.05"), (12345, "$123.45"), (100000, "$1000.00")])
    def test_format_cents(self, cents, expected):
        """Test cents render as dollars with two decimals."""
        assert format_cents(cents) == expected

    def test_provider_emoji(self):
        """Test known providers have an emoji and others a cloud."""
        assert provider_emoji("AWS") == "🟠"
        assert provider_emoji("gcp") == "🔵"
        assert provider_emoji("VERCEL") == "▲"
        assert provider_emoji("OTHER") == "☁️"


class TestSlackNotifier:
    """Test cases for the Slack Block Kit payloads."""

    def test_anomaly_payload(self, report):
        """Test the alert lists each provider's services and links the dashboard."""
        blocks = SlackNotifier().build_anomaly_payload(report)["blocks"]

        assert blocks[0]["text"]["text"] == "🚨 ⚠️ Spike detected!"
        assert "*Acme*" in blocks[1]["text"]["text"]
        assert "*$123.45* above average" in blocks[1]["text"]["text"]
        assert blocks[3]["text"]["text"] == (
            "*🟠 AWS*\n• *S3*: $90.00 (+4400%)\n• *EC2*: $50.00 (+355%)\n"
        )
        assert blocks[4]["text"]["text"].startswith("*▲ VERCEL*\n• *Edge Requests*: $8.45 (+30%)")

        button = blocks[-2]["elements"][0]
        assert button["url"] == "https://app.burnwatch.test/dashboard"
        assert button["style"] == "danger"
        assert blocks[-1]["elements"][0]["text"] == "BurnWatch Intelligence"

    def test_test_payload(self):
        """Test the connection test names the organization when known."""
        text = SlackNotifier().build_test_payload("Acme")["blocks"][0]["text"]["text"]
        assert text == "✅ *BurnWatch* – Webhook connection verified.\nOrganization: _Acme_"

        text = SlackNotifier().build_test_payload()["blocks"][0]["text"]["text"]
        assert "Organization" not in text

    async def test_send_posts_json(self, report):
        """Test the payload is posted as JSON to the webhook."""
        transport, requests = recording_transport()

        await SlackNotifier(transport=transport).send_anomaly_alert(WEBHOOK_URL, report)

        assert str(requests[0].url) == WEBHOOK_URL
        assert requests[0].method == "POST"
        assert "blocks" in json.loads(requests[0].content)

    async def test_error_status_raises(self, report):
        """Test non-2xx responses raise with the status and body."""
        transport, _ = recording_transport(status_code=404, text="no_service")

        with pytest.raises(NotificationError) as exc_info:
            await SlackNotifier(transport=transport).send_anomaly_alert(WEBHOOK_URL, report)

        assert exc_info.value.status_code == 404
        assert exc_info.value.channel == "slack"
        assert str(exc_info.value) == "Slack webhook failed: 404 no_service"

    async def test_transport_error_raises(self):
        """Test network failures raise a notification error."""

        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(NotificationError):
            await SlackNotifier(transport=httpx.MockTransport(handler)).send_test_message(WEBHOOK_URL)


class TestDiscordNotifier:
    """Test cases for the Discord embed payloads."""

    def test_anomaly_payload(self, report):
        """Test the embed carries one field per provider."""
        embed = DiscordNotifier().build_anomaly_payload(report)["embeds"][0]

        assert embed["title"] == "🚨 COST ANOMALY"
        assert embed["color"] == ANOMALY_COLOR
        assert embed["url"] == "https://app.burnwatch.test/dashboard"
        assert "**Acme**" in embed["description"]
        assert [field["name"] for field in embed["fields"]] == ["🟠 AWS", "▲ VERCEL"]
        assert embed["fields"][0]["value"] == "• **S3**: $90.00 (+4400%)\n• **EC2**: $50.00 (+355%)\n"
        assert embed["footer"]["text"] == "BurnWatch Intelligence"

    def test_no_url_without_dashboard(self, report):
        """Test the embed link is omitted when no dashboard URL is known."""
        report.dashboard_url = ""
        assert "url" not in DiscordNotifier().build_anomaly_payload(report)["embeds"][0]

    def test_test_payload(self):
        """Test the connection test embed."""
        embed = DiscordNotifier().build_test_payload("Acme")["embeds"][0]

        assert embed["title"] == "✅ Connection verified"
        assert embed["description"].endswith("Organization: **Acme**")

    async def test_send_test_message(self):
        """Test 204 responses count as delivered."""
        transport, requests = recording_transport(status_code=204, text="")

        await DiscordNotifier(transport=transport).send_test_message(WEBHOOK_URL, "Acme")

        assert "embeds" in json.loads(requests[0].content)

    async def test_error_status_raises(self, report):
        """Test rejected webhooks raise with the channel name."""
        transport, _ = recording_transport(status_code=401, text='{"message": "Invalid Webhook Token"}')

        with pytest.raises(NotificationError) as exc_info:
            await DiscordNotifier(transport=transport).send_anomaly_alert(WEBHOOK_URL, report)

        assert exc_info.value.channel == "discord"
        assert "Discord webhook failed: 401" in str(exc_info.value)
