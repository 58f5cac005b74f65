"""
Scheduled channel sync.

Pulls the backend channel list on an interval and folds it into the
registry. Uses APScheduler in-process; each run is a plain reconciler
``sync()`` so a failed fetch is logged and the next tick tries again.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from channelkit.channels.models import ReconcileReport
from channelkit.channels.reconciler import ChannelSyncReconciler

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "channel_sync"


class SyncScheduler:
    def __init__(self, reconciler: ChannelSyncReconciler, interval_minutes: int):
        self._reconciler = reconciler
        self.interval_minutes = interval_minutes
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.last_report: Optional[ReconcileReport] = None

    async def run_sync(self) -> ReconcileReport:
        report = await self._reconciler.sync()
        self.last_report = report
        if report.ok:
            logger.info(
                "[SYNC] Scheduled sync: %d fetched, %d inserted",
                report.fetched, len(report.inserted),
            )
        else:
            logger.warning("[SYNC] Scheduled sync failed: %s", report.error)
        return report

    def start(self) -> bool:
        """Start the interval job; a non-positive interval leaves it off."""
        if self.interval_minutes <= 0:
            logger.info("[SYNC] Periodic sync disabled")
            return False
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_sync,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=SYNC_JOB_ID,
            name="Remote channel sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("[SYNC] Periodic sync every %d min", self.interval_minutes)
        return True

    def shutdown(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running
