# filterpro/services/scheduler.py
import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from croniter import croniter
from motor.motor_asyncio import AsyncIOMotorDatabase

from filterpro.config import (
    DATASOURCES_COLLECTION,
    DEFAULT_SYNC_INTERVAL,
    SCHEDULER_TIMEZONE,
    SYNC_INTERVAL_TO_CRON,
)
from filterpro.logging_setup import logger
from filterpro.models import TriggeredBy
from filterpro.services.sync import SyncEngine


def interval_to_cron(interval: Optional[str]) -> str:
    """Maps '5m'..'24h' to a cron expression; anything else falls back to hourly."""
    return SYNC_INTERVAL_TO_CRON.get(interval or "", SYNC_INTERVAL_TO_CRON[DEFAULT_SYNC_INTERVAL])


@dataclass
class ScheduledJob:
    datasource_id: str
    interval: str
    cron_expression: str
    task: Optional[asyncio.Task] = None
    next_run: Optional[datetime] = None
    syncing: bool = False
    stopped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "datasourceId": self.datasource_id,
            "interval": self.interval,
            "cronExpression": self.cron_expression,
            "nextRun": self.next_run.isoformat() if self.next_run else None,
            "running": self.task is not None and not self.task.done(),
        }


class SyncScheduler:
    """
    Keeps one recurring sync job per eligible datasource (enabled, with
    syncConfig.enabled). Each job is an asyncio task sleeping until the next
    cron fire time. Built once per process and shared through app.state.
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        sync_engine: SyncEngine,
        timezone: str = SCHEDULER_TIMEZONE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.datasources = database[DATASOURCES_COLLECTION]
        self.sync_engine = sync_engine
        self.tz = ZoneInfo(timezone)
        self.jobs: Dict[str, ScheduledJob] = {}
        self._sleep = sleep

    def schedule_datasource(self, datasource_id: str, interval: Optional[str]) -> ScheduledJob:
        """Replaces any existing job for the datasource. Must run inside the event loop."""
        self.unschedule_datasource(datasource_id)

        job = ScheduledJob(
            datasource_id=datasource_id,
            interval=interval or DEFAULT_SYNC_INTERVAL,
            cron_expression=interval_to_cron(interval),
        )
        job.task = asyncio.create_task(self._run_job(job), name=f"sync-{datasource_id}")
        self.jobs[datasource_id] = job
        logger.info(f"Datasource scheduled: {datasource_id} ({job.interval} = {job.cron_expression})")
        return job

    def unschedule_datasource(self, datasource_id: str) -> bool:
        job = self.jobs.pop(datasource_id, None)
        if job is None:
            return False
        job.stopped = True
        # A run already in flight finishes; the loop exits after it.
        if job.task is not None and not job.syncing:
            job.task.cancel()
        logger.info(f"Datasource unscheduled: {datasource_id}")
        return True

    async def _run_job(self, job: ScheduledJob) -> None:
        schedule = croniter(job.cron_expression, datetime.now(self.tz))
        while not job.stopped:
            job.next_run = schedule.get_next(datetime)
            delay = (job.next_run - datetime.now(self.tz)).total_seconds()
            await self._sleep(max(delay, 0.0))
            if job.stopped:
                return
            job.syncing = True
            try:
                await self.run_scheduled_sync(job.datasource_id)
            finally:
                job.syncing = False

    async def run_scheduled_sync(self, datasource_id: str) -> None:
        """
        One cron-triggered sync. Failures are logged and swallowed so the job
        keeps its schedule.
        """
        logger.info(f"Scheduled sync starting: {datasource_id}")
        try:
            result = await self.sync_engine.sync_datasource(datasource_id, TriggeredBy.CRON)
            logger.info(
                f"Scheduled sync finished: {datasource_id}",
                extra={"status": result.status.value, **result.stats.to_document()},
            )
        except Exception as e:
            logger.error(f"Scheduled sync failed: {datasource_id}: {e}", exc_info=True)

    async def initialize_schedules(self) -> int:
        """Schedules every datasource with both enabled flags set. Returns the job count."""
        logger.info("Initializing sync schedules...")
        cursor = self.datasources.find({"enabled": True, "syncConfig.enabled": True})
        docs = await cursor.to_list(length=None)
        for doc in docs:
            self.schedule_datasource(doc["id"], (doc.get("syncConfig") or {}).get("interval"))
        logger.info(f"Sync schedules initialized: {len(docs)} datasources")
        return len(docs)

    async def update_schedule(self, datasource_id: str) -> Optional[ScheduledJob]:
        """
        Re-reads a datasource after a create/update/delete and reschedules or
        unschedules it.
        """
        doc = await self.datasources.find_one({"id": datasource_id})
        sync_config = (doc or {}).get("syncConfig") or {}
        if doc and doc.get("enabled", True) and sync_config.get("enabled"):
            return self.schedule_datasource(datasource_id, sync_config.get("interval"))
        self.unschedule_datasource(datasource_id)
        return None

    def stop_all(self) -> None:
        logger.info("Stopping all sync schedules...")
        for datasource_id in list(self.jobs):
            self.unschedule_datasource(datasource_id)

    async def shutdown(self) -> None:
        """
        Stops every job and waits for its task to end. Sleeping jobs are
        cancelled; a sync already running is awaited to completion.
        """
        tasks = [job.task for job in self.jobs.values() if job.task is not None]
        self.stop_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def reinitialize(self) -> List[Dict[str, Any]]:
        self.stop_all()
        await self.initialize_schedules()
        return self.get_active_jobs()

    def get_active_jobs(self) -> List[Dict[str, Any]]:
        return [job.to_dict() for job in self.jobs.values()]
