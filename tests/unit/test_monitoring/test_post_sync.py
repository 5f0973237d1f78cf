"""
Tests for the post-sync detection and dispatch trigger.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from burnwatch.models import AnomalyReport, ProviderAnomalyGroup, ServiceAnomaly
from burnwatch.monitoring.post_sync import PostSyncTrigger


@pytest.fixture
def report():
    return AnomalyReport(
        total_impact_cents=3900,
        providers={
            "AWS": ProviderAnomalyGroup(
                services=[
                    ServiceAnomaly(name="EC2", current_spend=5000, average_spend=1100, spike_percent=355, z_score=39.0)
                ],
                provider_total_impact_cents=3900,
            )
        },
    )


@pytest.fixture
def detector():
    detector = MagicMock()
    detector.detect = AsyncMock(return_value=None)
    return detector


@pytest.fixture
def dispatcher():
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value=["slack"])
    return dispatcher


class TestPostSyncTrigger:
    """Test cases for PostSyncTrigger."""

    async def test_dispatches_report(self, detector, dispatcher, report):
        """Test a detected report is handed to the dispatcher."""
        detector.detect.return_value = report
        trigger = PostSyncTrigger(detector, dispatcher)

        assert await trigger.run("org-1") == ["slack"]
        detector.detect.assert_awaited_once_with("org-1")
        dispatcher.dispatch.assert_awaited_once_with("org-1", report)

    async def test_nothing_to_send(self, detector, dispatcher):
        """Test no dispatch happens without anomalies."""
        trigger = PostSyncTrigger(detector, dispatcher)

        assert await trigger.run("org-1") == []
        dispatcher.dispatch.assert_not_awaited()

    async def test_detection_failure_swallowed(self, detector, dispatcher, caplog):
        """Test detection errors are logged, never raised."""
        detector.detect.side_effect = RuntimeError("ledger unavailable")
        trigger = PostSyncTrigger(detector, dispatcher)

        assert await trigger.run("org-1") == []
        assert "Post-sync processing failed for org-1" in caplog.text

    async def test_dispatch_failure_swallowed(self, detector, dispatcher, report):
        """Test dispatch errors are logged, never raised."""
        detector.detect.return_value = report
        dispatcher.dispatch.side_effect = ConnectionError("profile lookup failed")
        trigger = PostSyncTrigger(detector, dispatcher)

        assert await trigger.run("org-1") == []

    async def test_schedule_runs_in_background(self, detector, dispatcher, report):
        """Test scheduled work runs after the caller moves on and drain waits for it."""
        release = asyncio.Event()

        async def slow_detect(organization_id):
            await release.wait()
            return report

        detector.detect.side_effect = slow_detect
        trigger = PostSyncTrigger(detector, dispatcher)

        task = trigger.schedule("org-1")
        await asyncio.sleep(0)
        assert trigger.pending == 1
        assert not task.done()

        release.set()
        await trigger.drain()

        assert trigger.pending == 0
        assert task.result() == ["slack"]
        dispatcher.dispatch.assert_awaited_once_with("org-1", report)

    async def test_drain_without_tasks(self, detector, dispatcher):
        """Test draining an idle trigger returns immediately."""
        await PostSyncTrigger(detector, dispatcher).drain()
