from apscheduler.schedulers.asyncio import AsyncIOScheduler

from deep_memory.core.base import ErrorLevel
from deep_memory.core.config import MaintenanceSettings
from deep_memory.core.decorators import with_error_handling
from deep_memory.core.logging import get_logger

from .chat_scope import ChatScope
from .lifecycle import LifecycleEngine, SweepReport

logger = get_logger(__name__)


class MaintenanceScheduler:
    """Background jobs for memory lifecycle maintenance.

    ``tick`` and ``deep_tick`` run the same work as the scheduled jobs, so
    hosts and tests can drive maintenance without waiting on timers.
    """

    def __init__(
        self,
        engine: LifecycleEngine,
        scope: ChatScope,
        settings: MaintenanceSettings | None = None,
    ):
        self.engine = engine
        self.scope = scope
        self.settings = settings or MaintenanceSettings()
        self.scheduler = AsyncIOScheduler()
        self._setup_jobs()

    def _setup_jobs(self):
        """Configure the maintenance jobs."""
        self.scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.settings.interval_seconds,
            id="maintenance",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.deep_tick,
            "interval",
            seconds=self.settings.deep_interval_seconds,
            id="deep_maintenance",
            max_instances=1,
            coalesce=True,
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    async def start(self):
        if self.scheduler.running:
            return
        self.scheduler.start()
        logger.info("MaintenanceScheduler started - background memory maintenance active")

    async def shutdown(self):
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=False)
        logger.info("MaintenanceScheduler shutdown complete")

    @with_error_handling(error_level=ErrorLevel.WARNING, reraise=False)
    async def tick(self) -> list[SweepReport]:
        """Decay and migration, then persist what changed."""
        if not self.scope.active:
            return []
        reports = await self.engine.run_maintenance()
        await self.scope.save()
        return reports

    @with_error_handling(error_level=ErrorLevel.WARNING, reraise=False)
    async def deep_tick(self) -> list[SweepReport]:
        """Conflicts, compression, expiry and pattern analysis, then persist."""
        if not self.scope.active:
            return []
        reports = await self.engine.run_deep_maintenance()
        await self.scope.save()
        return reports

    def get_job_status(self) -> dict:
        """Get status of all scheduled jobs."""
        jobs = self.scheduler.get_jobs()
        return {
            "scheduler_running": self.scheduler.running,
            "jobs": [
                {
                    "id": job.id,
                    "name": job.name,
                    # Jobs of a scheduler that was never started have no next run time yet
                    "next_run": next_run.isoformat() if (next_run := getattr(job, "next_run_time", None)) else None,
                    "func": job.func.__name__,
                }
                for job in jobs
            ],
        }
