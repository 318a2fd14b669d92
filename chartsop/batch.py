"""BatchRunner — runs many pair × strategy jobs in a bounded worker pool.

Jobs are independent: one job's failure is recorded and the batch carries
on.  Each job gets its own ``CancelToken`` so it can be stopped between
pipeline stages, individually or en masse.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from chartsop.analysis.models import CombinedDecision
from chartsop.config import JobConfig
from chartsop.errors import ChartSOPError
from chartsop.pipeline import CancelToken, PipelineResult

logger = logging.getLogger("chartsop.batch")

# (job, cancel token) -> awaitable pipeline result
JobRunner = Callable[[JobConfig, CancelToken], Awaitable[PipelineResult]]


@dataclass(frozen=True)
class JobOutcome:
    """Success or failure record of one job."""

    pair: str
    strategy: str
    success: bool
    decision: Optional[CombinedDecision] = None
    report_path: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "pair": self.pair,
            "strategy": self.strategy,
            "success": self.success,
            "status": self.decision.status.value if self.decision else None,
            "signal": self.decision.signal.value if self.decision and self.decision.signal else None,
            "confidence": self.decision.confidence if self.decision else None,
            "report_path": self.report_path,
            "error": self.error,
        }


def summarize(outcomes: list[JobOutcome]) -> dict:
    """Aggregate a batch into counts plus one line per job."""
    succeeded = [o for o in outcomes if o.success]
    lines = []
    for o in outcomes:
        if o.success and o.decision is not None:
            signal = o.decision.signal.value.upper() if o.decision.signal else "-"
            lines.append(
                f"{o.pair} {o.strategy}: {o.decision.status.value} "
                f"{signal} ({o.decision.confidence * 100:.1f}%)"
            )
        else:
            lines.append(f"{o.pair} {o.strategy}: FAILED ({o.error})")
    return {
        "total": len(outcomes),
        "succeeded": len(succeeded),
        "failed": len(outcomes) - len(succeeded),
        "confirmed": sum(1 for o in succeeded if o.decision is not None and o.decision.valid),
        "jobs": lines,
    }


class BatchRunner:
    """Lifecycle manager for one batch of jobs.

    Args:
        jobs: Jobs to run (disabled jobs are dropped).
        run_job: Coroutine function executing one job's pipeline.
        max_concurrency: Upper bound on jobs in flight.
    """

    def __init__(
        self,
        jobs: list[JobConfig],
        run_job: JobRunner,
        max_concurrency: int = 2,
    ) -> None:
        self._jobs = [j for j in jobs if j.enabled]
        self._run_job = run_job
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._tokens: dict[str, CancelToken] = {j.name: CancelToken() for j in self._jobs}
        self.last_summary: Optional[dict] = None

    @property
    def job_names(self) -> list[str]:
        return [j.name for j in self._jobs]

    # ── Cancellation ─────────────────────────────────────────────────────

    def cancel(self, pair: str, strategy: str) -> bool:
        """Cancel one job before its next stage.  Returns False if unknown."""
        token = self._tokens.get(JobConfig(pair=pair, strategy=strategy).name)
        if token is None:
            return False
        token.cancel()
        logger.info("Cancel requested for job '%s:%s'.", pair, strategy)
        return True

    def cancel_all(self) -> None:
        for name, token in self._tokens.items():
            token.cancel()
            logger.info("Cancel requested for job '%s'.", name)

    # ── Run ──────────────────────────────────────────────────────────────

    async def _run_one(self, job: JobConfig) -> JobOutcome:
        async with self._semaphore:
            token = self._tokens[job.name]
            logger.info("Starting job '%s'.", job.name)
            try:
                result = await self._run_job(job, token)
            except ChartSOPError as exc:
                logger.error("Job '%s' failed: %s", job.name, exc)
                return JobOutcome(job.pair, job.strategy, success=False, error=str(exc))
            except Exception as exc:  # continue-on-error across jobs
                logger.exception("Job '%s' crashed: %s", job.name, exc)
                return JobOutcome(job.pair, job.strategy, success=False, error=str(exc))
            return JobOutcome(
                job.pair,
                job.strategy,
                success=True,
                decision=result.decision,
                report_path=result.report_path,
            )

    async def run_all(self) -> list[JobOutcome]:
        """Run every job and return outcomes in job order."""
        outcomes = list(await asyncio.gather(*(self._run_one(j) for j in self._jobs)))
        self.last_summary = summarize(outcomes)
        logger.info(
            "Batch complete: %d succeeded, %d failed, %d confirmed",
            self.last_summary["succeeded"],
            self.last_summary["failed"],
            self.last_summary["confirmed"],
        )
        for line in self.last_summary["jobs"]:
            logger.info("  %s", line)
        return outcomes
