"""Star-growth scoring and the concurrent LLM appraisal pool."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Optional, Sequence

from gold_miner.common.cancellation import CancellationToken
from gold_miner.common.errors import AppraisalInterruptedError
from gold_miner.common.log_sanitizer import sanitize_for_log, sanitize_log_extra
from gold_miner.config.settings import settings
from gold_miner.models.candidate import CandidateRepo
from gold_miner.ports import Appraiser

logger = logging.getLogger(__name__)

DEFAULT_WORKER_COUNT = 3
DEFAULT_ITEM_TIMEOUT_SECONDS = 30.0


def calculate_star_growth_rate(
    repos: Sequence[CandidateRepo],
    *,
    now: Optional[datetime] = None,
) -> list[CandidateRepo]:
    """Set `star_growth_rate` (stars per day since creation) on every repository in place."""

    current = now or datetime.now(UTC)
    for repo in repos:
        days_alive = repo.age_days(current)
        repo.star_growth_rate = repo.stars / days_alive if days_alive > 0 else 0.0
    return list(repos)


@dataclass(slots=True)
class AppraisalReport:
    """Outcome of one pool run: every input repository plus per-item error summaries."""

    repositories: list[CandidateRepo] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)


class AppraisalPool:
    """Fans repository appraisals out over a bounded set of asyncio workers."""

    def __init__(
        self,
        appraiser: Appraiser,
        *,
        worker_count: Optional[int] = None,
        item_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._appraiser = appraiser
        self._worker_count = DEFAULT_WORKER_COUNT
        self.set_worker_count(worker_count or getattr(settings, "MINING_CONCURRENCY", DEFAULT_WORKER_COUNT))
        timeout = item_timeout_seconds or getattr(settings, "MINING_APPRAISAL_TIMEOUT_SECONDS", DEFAULT_ITEM_TIMEOUT_SECONDS)
        self._item_timeout = timeout if timeout > 0 else DEFAULT_ITEM_TIMEOUT_SECONDS

    @property
    def worker_count(self) -> int:
        return self._worker_count

    def set_worker_count(self, count: Optional[int]) -> None:
        """Non-positive values are ignored."""
        if count is not None and count > 0:
            self._worker_count = int(count)

    async def analyze(
        self,
        repos: Sequence[CandidateRepo],
        *,
        cancel: Optional[CancellationToken] = None,
        worker_count: Optional[int] = None,
    ) -> AppraisalReport:
        """Appraise every repository, at most `worker_count` at a time.

        Failed or timed-out items come back unchanged and are listed in
        `AppraisalReport.errors`. Result order follows completion order.

        Raises:
            AppraisalInterruptedError: `cancel` fired before every worker finished.
        """
        workers = worker_count if worker_count is not None and worker_count > 0 else self._worker_count
        token = cancel or CancellationToken()
        report = AppraisalReport()
        if not repos:
            return report

        logger.info(
            "Starting LLM appraisal",
            extra=sanitize_log_extra(repositories=len(repos), workers=workers),
        )

        jobs: asyncio.Queue[CandidateRepo] = asyncio.Queue()
        for repo in repos:
            jobs.put_nowait(repo)

        tasks = [
            asyncio.create_task(self._worker(worker_id, jobs, token, report))
            for worker_id in range(1, min(workers, len(repos)) + 1)
        ]
        all_done = asyncio.gather(*tasks)
        cancelled = asyncio.create_task(token.wait())

        try:
            done, _ = await asyncio.wait({all_done, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not all_done.done():
                all_done.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
            cancelled.cancel()

        if all_done not in done:
            logger.warning(
                "LLM appraisal interrupted by cancellation",
                extra=sanitize_log_extra(completed=len(report.repositories), total=len(repos), cause=token.cause),
            )
            raise AppraisalInterruptedError(token.cause, repos)

        if report.errors:
            logger.warning(
                "LLM appraisal finished with errors",
                extra=sanitize_log_extra(failed=report.failed, errors=report.errors),
            )
        logger.info(
            "LLM appraisal completed",
            extra=sanitize_log_extra(repositories=len(report.repositories), failed=report.failed),
        )
        return report

    async def _worker(
        self,
        worker_id: int,
        jobs: "asyncio.Queue[CandidateRepo]",
        cancel: CancellationToken,
        report: AppraisalReport,
    ) -> None:
        while True:
            try:
                repo = jobs.get_nowait()
            except asyncio.QueueEmpty:
                return

            logger.debug("Worker %d appraising %s", worker_id, repo.name)
            item_scope = cancel.child(timeout=self._item_timeout)
            try:
                appraised = await asyncio.wait_for(
                    self._appraiser.appraise(repo, cancel=item_scope),
                    timeout=self._item_timeout,
                )
            except Exception as exc:
                reason = "timed out" if isinstance(exc, TimeoutError) else str(exc)
                report.errors.append(sanitize_for_log(f"{repo.name}: {reason}"))
                logger.warning(
                    "Appraisal failed, keeping repository unscored",
                    extra=sanitize_log_extra(worker=worker_id, repo=repo.name, error=reason),
                )
                report.repositories.append(repo)
                continue
            finally:
                item_scope.cancel()
                jobs.task_done()

            repo.apply_appraisal(appraised)
            logger.debug("Worker %d scored %s at %d", worker_id, repo.name, repo.llm_score)
            report.repositories.append(repo)
