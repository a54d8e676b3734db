"""Reconciliation scheduler: periodic ticks plus on-demand triggers for each job"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from jobs.base import ReconciliationJob, JobRunSummary

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = timedelta(minutes=2)


class JobAlreadyRunning(Exception):
    """On-demand trigger for a job whose previous run has not finished"""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} is already running")


class UnknownJob(Exception):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Unknown job: {job_id}")


class ReconciliationScheduler:
    """
    Drives the reconciliation jobs in-process.

    Runs of the same job never overlap: APScheduler keeps one instance per
    job (coalescing missed ticks), and a per-job asyncio.Lock is shared by
    ticks and on-demand triggers. Different jobs may run concurrently.
    """

    def __init__(
        self,
        jobs: Iterable[ReconciliationJob],
        intervals: Optional[Dict[str, timedelta]] = None,
    ):
        self.jobs: Dict[str, ReconciliationJob] = {job.job_id: job for job in jobs}
        self.intervals = intervals or {}
        self.last_summaries: Dict[str, JobRunSummary] = {}
        self._locks: Dict[str, asyncio.Lock] = {job_id: asyncio.Lock() for job_id in self.jobs}

        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 60
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

    def setup_jobs(self):
        """Register one interval trigger per job"""
        for job_id, job in self.jobs.items():
            interval = self.intervals.get(job_id, DEFAULT_INTERVAL)
            self.scheduler.add_job(
                self._run_scheduled,
                trigger=IntervalTrigger(seconds=int(interval.total_seconds())),
                args=[job_id],
                id=job_id,
                name=job.description or job_id,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            logger.info(f"⏰ Scheduled {job_id} every {interval}")

    def is_running(self, job_id: str) -> bool:
        lock = self._locks.get(job_id)
        return bool(lock and lock.locked())

    async def _run_scheduled(self, job_id: str) -> Optional[JobRunSummary]:
        lock = self._locks[job_id]
        if lock.locked():
            logger.info(f"⏭️ TICK_SKIPPED: {job_id} is still running")
            return None

        async with lock:
            summary = await self.jobs[job_id].run()
            self.last_summaries[job_id] = summary
            return summary

    async def trigger(self, job_id: str) -> JobRunSummary:
        """
        Run a job now and return its summary.

        Raises UnknownJob for an unregistered id and JobAlreadyRunning when
        a tick or another trigger holds the job.
        """
        job = self.jobs.get(job_id)
        if job is None:
            raise UnknownJob(job_id)

        lock = self._locks[job_id]
        if lock.locked():
            raise JobAlreadyRunning(job_id)

        async with lock:
            logger.info(f"▶️ MANUAL_TRIGGER: {job_id}")
            summary = await job.run()
            self.last_summaries[job_id] = summary
            return summary

    def start(self):
        """Start the scheduler"""
        self.setup_jobs()
        self.scheduler.start()

        jobs = self.scheduler.get_jobs()
        logger.warning(f"✅ Reconciliation scheduler started: {[job.id for job in jobs]}")
        for job in jobs:
            if job.next_run_time:
                logger.info(f"   - {job.name}: next run at {job.next_run_time}")

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Reconciliation scheduler stopped")

    def status(self) -> Dict[str, Any]:
        jobs = {}
        for job_id in self.jobs:
            summary = self.last_summaries.get(job_id)
            jobs[job_id] = {
                "running": self.is_running(job_id),
                "lastRun": summary.to_dict() if summary else None,
            }
        return {"schedulerRunning": self.scheduler.running, "jobs": jobs}
