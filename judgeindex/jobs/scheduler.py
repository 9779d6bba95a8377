"""
Background jobs: weekly sync, nightly aggregate views refresh and the
periodic refresh of stale analytics.
"""

from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from judgeindex.bootstrap import Components
from judgeindex.services.errors import SyncInProgressError


class JobScheduler:
    """
    Usage:
        job_scheduler.set_components(components)
        job_scheduler.start()
    """

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self._is_running = False
        self._components: Components | None = None

    def set_components(self, components: Components) -> None:
        """Inject the process-wide components."""
        self._components = components

    def _require(self) -> Components:
        if self._components is None:
            raise RuntimeError("JobScheduler has no components. Call set_components() first.")
        return self._components

    # ── Job handlers ──────────────────────────────────────────────────────────

    async def sync_job(self) -> None:
        components = self._require()
        logger.info("Starting scheduled sync...")
        try:
            summary = await components.orchestrator.run(components.sync_options())
            logger.info(
                f"Scheduled sync {summary.status.value}: "
                f"{summary.entities_processed} processed, {len(summary.errors)} errors"
            )
        except SyncInProgressError:
            logger.warning("Scheduled sync skipped, a run is already in progress")
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}")

    async def analytics_views_job(self) -> None:
        components = self._require()
        try:
            courts = await components.cache.refresh_aggregate_views()
            expired = await components.cache.distributed.cleanup_expired()
            logger.info(f"Analytics views job: {courts} courts, {expired} expired cache entries")
        except Exception as e:
            logger.error(f"Analytics views refresh failed: {e}")

    async def refresh_stale_job(self) -> None:
        components = self._require()
        try:
            await components.analytics.refresh_stale()
        except Exception as e:
            logger.error(f"Stale analytics refresh failed: {e}")

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._is_running:
            logger.warning("JobScheduler is already running")
            return

        settings = self._require().settings

        self.scheduler.add_job(
            self.sync_job,
            trigger=CronTrigger.from_crontab(settings.sync_cron),
            id="judge_sync",
            name="Judge Sync",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(f"Sync job: cron '{settings.sync_cron}'")

        self.scheduler.add_job(
            self.analytics_views_job,
            trigger=CronTrigger.from_crontab(settings.analytics_views_cron),
            id="analytics_views_refresh",
            name="Analytics Views Refresh",
            replace_existing=True,
        )
        logger.info(f"Analytics views job: cron '{settings.analytics_views_cron}'")

        self.scheduler.add_job(
            self.refresh_stale_job,
            trigger="interval",
            minutes=settings.analytics_refresh_interval_minutes,
            id="stale_analytics_refresh",
            name="Stale Analytics Refresh",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(
            f"Stale analytics job: every {settings.analytics_refresh_interval_minutes} min"
        )

        self.scheduler.start()
        self._is_running = True
        logger.info("JobScheduler started")

    def stop(self) -> None:
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("JobScheduler stopped")

    def is_running(self) -> bool:
        return self._is_running

    def get_status(self) -> dict[str, Any]:
        jobs = []
        if self._is_running:
            for job in self.scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                    }
                )
        return {"running": self._is_running, "jobs": jobs}


# Global scheduler instance
job_scheduler = JobScheduler()
