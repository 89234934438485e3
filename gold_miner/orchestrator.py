"""Mining cycle orchestrator: fetch, filter, analyze, persist and notify."""

from __future__ import annotations

import enum
import logging
from datetime import UTC, datetime
from typing import Any, Callable, Optional, Sequence

from gold_miner.common.cancellation import CancellationToken
from gold_miner.common.errors import AppraisalInterruptedError, OperationCancelledError
from gold_miner.common.log_sanitizer import sanitize_for_log, sanitize_log_extra
from gold_miner.config.settings import settings
from gold_miner.models.candidate import CandidateRepo
from gold_miner.ports import Appraiser, Fetcher, Notifier, RepoStore
from gold_miner.services.activity_filter import ActivityFilter
from gold_miner.services.analyzer import AppraisalPool, calculate_star_growth_rate

logger = logging.getLogger(__name__)

DEFAULT_TOPICS = ("ai-coding", "ide-extension", "dev-tools")
DEFAULT_TRENDING_LANGUAGE = "all"
DEFAULT_TRENDING_WINDOW = "weekly"
DEFAULT_MAX_AGE_DAYS = 10
DEFAULT_SCORE_THRESHOLD = 50
DEFAULT_NOTIFY_DELAY_SECONDS = 3.0


class CycleStage(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FILTERING_AGE = "filtering_age"
    FILTERING_ACTIVITY = "filtering_activity"
    ANALYZING_GROWTH = "analyzing_growth"
    ANALYZING_LLM = "analyzing_llm"
    PERSISTING = "persisting"
    DONE = "done"


def dedupe_by_id(repos: Sequence[CandidateRepo]) -> list[CandidateRepo]:
    """Drop repeated ids, keeping the first occurrence."""
    seen: set[str] = set()
    unique: list[CandidateRepo] = []
    for repo in repos:
        if repo.id in seen:
            continue
        seen.add(repo.id)
        unique.append(repo)
    return unique


class _CycleCancelled(Exception):
    """Internal signal that the cycle token fired at a stage boundary."""


class MiningOrchestrator:
    """Runs one mining cycle over injected collaborators.

    Every stage degrades instead of failing: a broken source, filter,
    appraisal, save or notification is logged and the cycle carries on with
    what it has. Only the cycle token ends a run early.
    """

    def __init__(
        self,
        *,
        fetcher: Fetcher,
        store: RepoStore,
        appraiser: Optional[Appraiser] = None,
        pool: Optional[AppraisalPool] = None,
        activity_filter: Optional[ActivityFilter] = None,
        notifier: Optional[Notifier] = None,
        topics: Optional[Sequence[str]] = None,
        trending_language: Optional[str] = None,
        trending_window: Optional[str] = None,
        max_age_days: Optional[int] = None,
        score_threshold: Optional[int] = None,
        notify_delay_seconds: Optional[float] = None,
        now_provider: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        if pool is None and appraiser is None:
            raise ValueError("MiningOrchestrator requires an appraiser or an appraisal pool")

        self._fetcher = fetcher
        self._store = store
        self._pool = pool or AppraisalPool(appraiser)
        self._activity_filter = activity_filter or ActivityFilter(now_provider=now_provider)
        self._notifier = notifier
        self._topics = tuple(topics if topics is not None else getattr(settings, "MINING_TOPICS", DEFAULT_TOPICS))
        self._trending_language = trending_language or getattr(
            settings, "MINING_TRENDING_LANGUAGE", DEFAULT_TRENDING_LANGUAGE
        )
        self._trending_window = trending_window or getattr(settings, "MINING_TRENDING_WINDOW", DEFAULT_TRENDING_WINDOW)
        self._max_age_days = (
            max_age_days if max_age_days is not None else getattr(settings, "MINING_MAX_AGE_DAYS", DEFAULT_MAX_AGE_DAYS)
        )
        self._score_threshold = (
            score_threshold
            if score_threshold is not None
            else getattr(settings, "MINING_SCORE_THRESHOLD", DEFAULT_SCORE_THRESHOLD)
        )
        self._notify_delay_seconds = (
            notify_delay_seconds
            if notify_delay_seconds is not None
            else getattr(settings, "MINING_NOTIFY_DELAY_SECONDS", DEFAULT_NOTIFY_DELAY_SECONDS)
        )
        self._now_provider = now_provider
        self.stage = CycleStage.IDLE

    async def run_cycle(
        self,
        *,
        cancel: Optional[CancellationToken] = None,
        concurrency: Optional[int] = None,
    ) -> dict[str, Any]:
        """Run one full cycle and return its stats. Never raises for stage failures."""

        token = cancel or CancellationToken()
        self.stage = CycleStage.IDLE
        run_stats: dict[str, Any] = {
            "started_at": datetime.now(UTC).isoformat(),
            "stage": self.stage.value,
            "stages": {},
            "errors": [],
            "processed": 0,
            "saved": 0,
            "cancelled": False,
        }
        logger.info(
            "Mining cycle started",
            extra=sanitize_log_extra(topics=list(self._topics), concurrency=concurrency),
        )

        try:
            repos = await self._fetch_stage(token, run_stats)
            repos = self._age_stage(token, run_stats, repos)
            repos = await self._activity_stage(token, run_stats, repos)
            repos = self._growth_stage(token, run_stats, repos)
            repos = await self._appraisal_stage(token, run_stats, repos, concurrency)
            await self._persist_stage(token, run_stats, repos)
            if not run_stats["cancelled"]:
                self._enter(CycleStage.DONE, run_stats)
        except _CycleCancelled:
            pass
        except Exception as exc:
            sanitized_error = sanitize_for_log(str(exc), key="error")
            logger.exception(
                "Mining cycle raised exception",
                extra=sanitize_log_extra(stage=self.stage.value, error=sanitized_error),
            )
            run_stats["errors"].append(f"{self.stage.value}: {sanitized_error}")
            run_stats["success"] = False

        if run_stats["cancelled"]:
            run_stats["cancel_cause"] = sanitize_for_log(str(token.cause))
            logger.warning(
                "Mining cycle ended early",
                extra=sanitize_log_extra(stage=self.stage.value, cause=token.cause),
            )

        run_stats.setdefault("success", True)
        run_stats["completed_at"] = datetime.now(UTC).isoformat()
        logger.info(
            "Mining cycle completed",
            extra=sanitize_log_extra(
                success=run_stats["success"],
                cancelled=run_stats["cancelled"],
                processed=run_stats["processed"],
                saved=run_stats["saved"],
                errors=run_stats["errors"],
            ),
        )
        return run_stats

    def _enter(self, stage: CycleStage, run_stats: dict[str, Any]) -> None:
        self.stage = stage
        run_stats["stage"] = stage.value

    def _checkpoint(self, token: CancellationToken, run_stats: dict[str, Any], stage: CycleStage) -> None:
        if token.cancelled:
            run_stats["cancelled"] = True
            raise _CycleCancelled()
        self._enter(stage, run_stats)

    def _record_error(self, run_stats: dict[str, Any], stage: CycleStage, message: str) -> None:
        run_stats["errors"].append(f"{stage.value}: {sanitize_for_log(message, key='error')}")

    async def _fetch_stage(self, token: CancellationToken, run_stats: dict[str, Any]) -> list[CandidateRepo]:
        self._checkpoint(token, run_stats, CycleStage.FETCHING)
        collected: list[CandidateRepo] = []
        stats = {"sources": 0, "failed_sources": 0, "fetched": 0, "unique": 0}

        sources: list[tuple[str, Callable[[], Any]]] = [
            (
                f"trending:{self._trending_language}/{self._trending_window}",
                lambda: self._fetcher.get_trending(self._trending_language, self._trending_window, cancel=token),
            )
        ]
        for topic in self._topics:
            sources.append((f"topic:{topic}", lambda topic=topic: self._fetcher.get_by_topic(topic, cancel=token)))

        for source_name, fetch in sources:
            stats["sources"] += 1
            try:
                repos = await fetch()
            except OperationCancelledError:
                run_stats["cancelled"] = True
                run_stats["stages"][CycleStage.FETCHING.value] = {"success": False, "stats": stats}
                raise _CycleCancelled()
            except Exception as exc:
                stats["failed_sources"] += 1
                self._record_error(run_stats, CycleStage.FETCHING, f"{source_name}: {exc}")
                logger.warning(
                    "Fetch source failed, skipping",
                    extra=sanitize_log_extra(source=source_name, error=str(exc)),
                )
                continue

            logger.info(
                "Fetched repositories",
                extra=sanitize_log_extra(source=source_name, repositories=len(repos)),
            )
            collected.extend(repos)

        unique = dedupe_by_id(collected)
        stats["fetched"] = len(collected)
        stats["unique"] = len(unique)
        run_stats["stages"][CycleStage.FETCHING.value] = {
            "success": stats["failed_sources"] < stats["sources"],
            "stats": stats,
        }
        return unique

    def _age_stage(
        self,
        token: CancellationToken,
        run_stats: dict[str, Any],
        repos: list[CandidateRepo],
    ) -> list[CandidateRepo]:
        self._checkpoint(token, run_stats, CycleStage.FILTERING_AGE)
        kept = self._activity_filter.filter_by_age(repos, self._max_age_days)
        run_stats["stages"][CycleStage.FILTERING_AGE.value] = {
            "success": True,
            "stats": {"input": len(repos), "kept": len(kept), "max_age_days": self._max_age_days},
        }
        logger.info(
            "Age filter applied",
            extra=sanitize_log_extra(input=len(repos), kept=len(kept), max_age_days=self._max_age_days),
        )
        return kept

    async def _activity_stage(
        self,
        token: CancellationToken,
        run_stats: dict[str, Any],
        repos: list[CandidateRepo],
    ) -> list[CandidateRepo]:
        self._checkpoint(token, run_stats, CycleStage.FILTERING_ACTIVITY)
        try:
            kept = await self._activity_filter.filter_by_recent_activity(repos, cancel=token)
        except OperationCancelledError:
            run_stats["cancelled"] = True
            raise _CycleCancelled()
        except Exception as exc:
            self._record_error(run_stats, CycleStage.FILTERING_ACTIVITY, str(exc))
            logger.warning(
                "Activity filter failed, continuing with unfiltered repositories",
                extra=sanitize_log_extra(error=str(exc), repositories=len(repos)),
            )
            run_stats["stages"][CycleStage.FILTERING_ACTIVITY.value] = {
                "success": False,
                "error": sanitize_for_log(str(exc), key="error"),
                "stats": {"input": len(repos), "kept": len(repos)},
            }
            return list(repos)

        run_stats["stages"][CycleStage.FILTERING_ACTIVITY.value] = {
            "success": True,
            "stats": {"input": len(repos), "kept": len(kept)},
        }
        logger.info("Activity filter applied", extra=sanitize_log_extra(input=len(repos), kept=len(kept)))
        return kept

    def _growth_stage(
        self,
        token: CancellationToken,
        run_stats: dict[str, Any],
        repos: list[CandidateRepo],
    ) -> list[CandidateRepo]:
        self._checkpoint(token, run_stats, CycleStage.ANALYZING_GROWTH)
        scored = calculate_star_growth_rate(repos, now=self._now_provider())
        run_stats["stages"][CycleStage.ANALYZING_GROWTH.value] = {"success": True, "stats": {"repositories": len(scored)}}
        return scored

    async def _appraisal_stage(
        self,
        token: CancellationToken,
        run_stats: dict[str, Any],
        repos: list[CandidateRepo],
        concurrency: Optional[int],
    ) -> list[CandidateRepo]:
        self._checkpoint(token, run_stats, CycleStage.ANALYZING_LLM)
        try:
            report = await self._pool.analyze(repos, cancel=token, worker_count=concurrency)
        except AppraisalInterruptedError as exc:
            run_stats["cancelled"] = True
            self._record_error(run_stats, CycleStage.ANALYZING_LLM, str(exc))
            run_stats["stages"][CycleStage.ANALYZING_LLM.value] = {
                "success": False,
                "error": sanitize_for_log(str(exc), key="error"),
                "stats": {"input": len(repos)},
            }
            return exc.repositories

        for error in report.errors:
            self._record_error(run_stats, CycleStage.ANALYZING_LLM, error)
        run_stats["stages"][CycleStage.ANALYZING_LLM.value] = {
            "success": True,
            "stats": {"input": len(repos), "appraised": len(report.repositories), "failed": report.failed},
        }
        return report.repositories

    async def _persist_stage(
        self,
        token: CancellationToken,
        run_stats: dict[str, Any],
        repos: list[CandidateRepo],
    ) -> None:
        self._checkpoint(token, run_stats, CycleStage.PERSISTING)
        stats = {
            "input": len(repos),
            "unqualified": 0,
            "existing": 0,
            "saved": 0,
            "notified": 0,
            "failed": 0,
        }
        run_stats["stages"][CycleStage.PERSISTING.value] = {"success": True, "stats": stats}

        for index, repo in enumerate(repos):
            if token.cancelled:
                run_stats["cancelled"] = True
                logger.info(
                    "Cycle cancelled, stopping persist stage early",
                    extra=sanitize_log_extra(remaining=len(repos) - index),
                )
                return

            if not repo.qualifies(self._score_threshold):
                stats["unqualified"] += 1
                continue

            try:
                if await self._store.exists(repo.id):
                    stats["existing"] += 1
                    logger.info("Repository already stored, skipping", extra=sanitize_log_extra(repo=repo.name))
                    continue
            except Exception as exc:
                stats["failed"] += 1
                self._record_error(run_stats, CycleStage.PERSISTING, f"exists {repo.name}: {exc}")
                logger.warning(
                    "Existence check failed, skipping repository",
                    extra=sanitize_log_extra(repo=repo.name, error=str(exc)),
                )
                continue

            try:
                await self._store.save(repo)
            except Exception as exc:
                stats["failed"] += 1
                self._record_error(run_stats, CycleStage.PERSISTING, f"save {repo.name}: {exc}")
                logger.warning("Failed to save repository", extra=sanitize_log_extra(repo=repo.name, error=str(exc)))
                continue
            stats["saved"] += 1
            run_stats["saved"] += 1

            try:
                if await self._notify_and_mark(token, run_stats, repo):
                    stats["notified"] += 1
                    run_stats["processed"] += 1
                if index < len(repos) - 1:
                    await token.sleep(self._notify_delay_seconds)
            except OperationCancelledError:
                run_stats["cancelled"] = True
                return

    async def _notify_and_mark(self, token: CancellationToken, run_stats: dict[str, Any], repo: CandidateRepo) -> bool:
        if self._notifier is None:
            logger.info("No notifier configured, leaving repository unnotified", extra=sanitize_log_extra(repo=repo.name))
            return False

        try:
            await self._notifier.notify(repo, cancel=token)
        except OperationCancelledError:
            raise
        except Exception as exc:
            self._record_error(run_stats, CycleStage.PERSISTING, f"notify {repo.name}: {exc}")
            logger.warning("Failed to notify repository", extra=sanitize_log_extra(repo=repo.name, error=str(exc)))
            return False

        try:
            await self._store.mark_notified(repo.id)
        except Exception as exc:
            self._record_error(run_stats, CycleStage.PERSISTING, f"mark_notified {repo.name}: {exc}")
            logger.warning(
                "Failed to mark repository as notified",
                extra=sanitize_log_extra(repo=repo.name, error=str(exc)),
            )
            return False

        repo.mark_notified()
        logger.info("Repository notified", extra=sanitize_log_extra(repo=repo.name, score=repo.llm_score))
        return True
