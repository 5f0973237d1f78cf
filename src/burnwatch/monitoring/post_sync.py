"""
Post-sync side channel: anomaly detection followed by notification fan-out.

Runs in the background after a successful sync. Nothing raised here may
reach the sync caller.
"""

import asyncio
import logging

from .anomaly import AnomalyDetector

logger = logging.getLogger(__name__)


class PostSyncTrigger:
    """Schedules detection and dispatch for an organization after a sync."""

    def __init__(self, detector: AnomalyDetector, dispatcher):
        self.detector = detector
        self.dispatcher = dispatcher
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, organization_id: str) -> asyncio.Task:
        """Start ``run`` as a background task and return it."""
        task = asyncio.create_task(self.run(organization_id), name=f"post-sync-{organization_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run(self, organization_id: str) -> list[str]:
        """
        Detect anomalies and dispatch the report.

        Returns:
            Channels the report was delivered to; empty when there was nothing
            to send or anything failed
        """
        try:
            report = await self.detector.detect(organization_id)
            if report is None:
                logger.debug(f"No anomalies for {organization_id}")
                return []
            return await self.dispatcher.dispatch(organization_id, report)
        except Exception:
            logger.exception(f"Post-sync processing failed for {organization_id}")
            return []

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def drain(self):
        """Wait for every scheduled task to finish."""
        while True:
            outstanding = [task for task in self._tasks if not task.done()]
            if not outstanding:
                return
            await asyncio.gather(*outstanding, return_exceptions=True)
