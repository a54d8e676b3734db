"""
Reconciliation job framework

Every job is a single pass over a freshly queried candidate set:
- candidate-level failures are counted and never abort the run
- a run-level failure (e.g. the candidate query itself) aborts only this run
  and is reported in the summary; the next tick starts from scratch
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from utils.datetime_helpers import get_naive_utc_now, to_isoformat

logger = logging.getLogger(__name__)


@dataclass
class JobRunSummary:
    """Result object shared by the scheduled path and the on-demand trigger"""

    job_id: str
    started_at: datetime = field(default_factory=get_naive_utc_now)
    finished_at: Optional[datetime] = None
    candidate_count: int = 0
    completed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    duration_ms: int = 0
    run_error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.run_error is None

    def mark_failed(self, error: BaseException):
        self.run_error = f"{type(error).__name__}: {error}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "success": self.success,
            "candidateCount": self.candidate_count,
            "completedCount": self.completed_count,
            "skippedCount": self.skipped_count,
            "errorCount": self.error_count,
            "durationMs": self.duration_ms,
            "startedAt": to_isoformat(self.started_at),
            "finishedAt": to_isoformat(self.finished_at),
            "error": self.run_error,
        }


class ReconciliationJob(ABC):
    """Base class for time-triggered, idempotent reconciliation jobs"""

    job_id: str = "reconciliation_job"
    description: str = ""

    async def run(self) -> JobRunSummary:
        """Execute one pass and return its summary. Never raises."""
        summary = JobRunSummary(job_id=self.job_id)
        started = time.monotonic()

        try:
            await self._execute(summary)
        except Exception as e:
            summary.mark_failed(e)
            logger.error(f"❌ {self.job_id.upper()}_RUN_FAILED: {e}", exc_info=True)
        finally:
            summary.finished_at = get_naive_utc_now()
            summary.duration_ms = int((time.monotonic() - started) * 1000)

        log = logger.info if summary.success and summary.error_count == 0 else logger.warning
        log(
            f"📊 {self.job_id.upper()}_SUMMARY: {summary.completed_count} completed, "
            f"{summary.skipped_count} skipped, {summary.error_count} errors "
            f"(candidates: {summary.candidate_count}, {summary.duration_ms}ms)"
        )
        return summary

    @abstractmethod
    async def _execute(self, summary: JobRunSummary) -> None:
        """Query candidates and process each one, updating ``summary`` in place"""
