"""Periodic curation, gap analysis and liveness jobs.

Runs inside the API process on an APScheduler AsyncIOScheduler so no external
trigger is required. Each job is a cron expression from CurationConfig,
evaluated in config.scheduler_timezone.
"""

import asyncio

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.utils.logging import get_logger

from .config import CurationConfig
from .gap_analyzer import GapAnalyzer
from .liveness import LivenessSweep
from .pipeline import CurationPipeline

logger = get_logger(__name__)

CURATION_JOB = "curation"
GAP_ANALYSIS_JOB = "gap_analysis"
LIVENESS_JOB = "liveness_sweep"


class CurationScheduler:
    """Registers and runs the recurring batch jobs.

    Curation shares a lock with the on-demand endpoint, so a scheduled run is
    skipped while another run is in progress. Each job allows one instance at
    a time and missed firings are coalesced into one.
    """

    def __init__(
        self,
        config: CurationConfig,
        pipeline: CurationPipeline,
        gap_analyzer: GapAnalyzer,
        sweep: LivenessSweep,
        lock: asyncio.Lock | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.config = config
        self.pipeline = pipeline
        self.gap_analyzer = gap_analyzer
        self.sweep = sweep
        self.lock = lock or asyncio.Lock()
        self.scheduler = scheduler or AsyncIOScheduler(timezone=config.scheduler_timezone)
        self._running = False

    def register_jobs(self) -> None:
        """Add the three cron jobs, replacing any with the same id."""
        jobs = [
            (CURATION_JOB, self.run_curation_job, self.config.curation_cron, "Daily curation run"),
            (
                GAP_ANALYSIS_JOB,
                self.run_gap_analysis_job,
                self.config.gap_analysis_cron,
                "Technique gap analysis",
            ),
            (LIVENESS_JOB, self.run_liveness_job, self.config.liveness_cron, "Dead video sweep"),
        ]
        for job_id, func, expression, name in jobs:
            self.scheduler.add_job(
                func,
                CronTrigger.from_crontab(expression, timezone=self.config.scheduler_timezone),
                id=job_id,
                name=name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=3600,
            )

    def start(self) -> bool:
        """Register jobs and start the scheduler.

        Returns:
            True when the scheduler is running, False when disabled by config.
        """
        if not self.config.scheduler_enabled:
            logger.info("scheduler_disabled")
            return False
        if self._running:
            return True

        self.register_jobs()
        self.scheduler.start()
        self._running = True
        logger.info(
            "scheduler_started",
            timezone=self.config.scheduler_timezone,
            jobs=[job.id for job in self.scheduler.get_jobs()],
        )
        return True

    def stop(self) -> None:
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("scheduler_stopped")

    def is_running(self) -> bool:
        return self._running

    async def run_curation_job(self) -> None:
        if self.lock.locked():
            logger.info("scheduled_job_skipped", job=CURATION_JOB, reason="run_in_progress")
            return

        try:
            async with self.lock:
                result = await self.pipeline.run_curation(
                    None, self.config.scheduled_budget_units
                )
        except Exception as e:
            logger.exception("scheduled_job_failed", job=CURATION_JOB, error_type=type(e).__name__)
            return

        logger.info(
            "scheduled_job_completed",
            job=CURATION_JOB,
            videos_added=result.videos_added,
            quota_used=result.quota_used,
            quota_exhausted=result.quota_exhausted,
            aborted_reason=result.aborted_reason,
        )

    async def run_gap_analysis_job(self) -> None:
        try:
            statuses = await self.gap_analyzer.run()
        except Exception as e:
            logger.exception(
                "scheduled_job_failed", job=GAP_ANALYSIS_JOB, error_type=type(e).__name__
            )
            return
        logger.info("scheduled_job_completed", job=GAP_ANALYSIS_JOB, techniques=len(statuses))

    async def run_liveness_job(self) -> None:
        try:
            result = await self.sweep.run()
        except Exception as e:
            logger.exception("scheduled_job_failed", job=LIVENESS_JOB, error_type=type(e).__name__)
            return
        logger.info(
            "scheduled_job_completed",
            job=LIVENESS_JOB,
            checked=result.checked,
            marked_unavailable=result.marked_unavailable,
        )
