"""Mining, search and resend entrypoints."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from gold_miner.common.cancellation import CancellationToken
from gold_miner.common.log_sanitizer import sanitize_log_extra
from gold_miner.config.database import init_db
from gold_miner.config.settings import settings
from gold_miner.crawlers.github.client import GitHubClient
from gold_miner.crawlers.github.fetcher import GitHubFetcher
from gold_miner.orchestrator import DEFAULT_TOPICS, MiningOrchestrator
from gold_miner.ports import Notifier, RepoStore, SemanticSearcher
from gold_miner.repositories import SQLAlchemyRepoStore
from gold_miner.services.activity_filter import ActivityFilter
from gold_miner.services.appraiser import LLMAppraiser
from gold_miner.services.notifier import FeishuNotifier

logger = logging.getLogger(__name__)

DEFAULT_CYCLE_TIMEOUT_SECONDS = 300.0

EMPTY_QUERY_GUIDANCE = (
    "Describe what you are looking for in plain words, for example "
    "'a code generation tool for Python' or 'an AI extension for VS Code'."
)
EMPTY_STORE_GUIDANCE = "No repositories have been mined yet. Run a mining cycle first."


def normalize_topics(raw: str | Sequence[str] | None, *, default: Sequence[str] = DEFAULT_TOPICS) -> list[str]:
    """Normalize topic input (comma string or sequence) into a deduplicated, ordered list."""
    if raw is None:
        return list(default)

    if isinstance(raw, str):
        requested = [part.strip().lower() for part in raw.split(",") if part.strip()]
    else:
        requested = [str(part).strip().lower() for part in raw if str(part).strip()]

    deduped: list[str] = []
    seen: set[str] = set()
    for topic in requested:
        if topic in seen:
            continue
        seen.add(topic)
        deduped.append(topic)
    return deduped or list(default)


async def run_mining_cycle(
    *,
    orchestrator: MiningOrchestrator | None = None,
    concurrency: int | None = None,
    timeout_seconds: float | None = None,
    topics: str | Sequence[str] | None = None,
) -> dict[str, Any]:
    """Run one mining cycle under a cycle-wide deadline."""
    timeout = timeout_seconds or getattr(settings, "MINING_CYCLE_TIMEOUT_SECONDS", DEFAULT_CYCLE_TIMEOUT_SECONDS)
    cancel = CancellationToken(timeout=timeout)

    if orchestrator is not None:
        return await orchestrator.run_cycle(cancel=cancel, concurrency=concurrency)

    init_db()
    async with GitHubClient() as client:
        notifier = FeishuNotifier() if settings.FEISHU_WEBHOOK_URL else None
        if notifier is None:
            logger.warning("FEISHU_WEBHOOK_URL is not set; discoveries will be saved without notification")

        job_orchestrator = MiningOrchestrator(
            fetcher=GitHubFetcher(client),
            store=SQLAlchemyRepoStore(),
            appraiser=LLMAppraiser(),
            activity_filter=ActivityFilter(client),
            notifier=notifier,
            topics=normalize_topics(topics, default=settings.MINING_TOPICS),
        )
        return await job_orchestrator.run_cycle(cancel=cancel, concurrency=concurrency)


async def run_search(
    query: str | None,
    *,
    store: RepoStore | None = None,
    appraiser: SemanticSearcher | None = None,
    semantic: bool = True,
) -> dict[str, Any]:
    """Answer a search request over stored repositories.

    Semantic mode asks the LLM over recent candidates; keyword mode runs a
    substring match in the store.
    """
    text = (query or "").strip()
    if not text:
        return {"success": True, "answer": EMPTY_QUERY_GUIDANCE, "results": []}

    repo_store = store or SQLAlchemyRepoStore()

    if not semantic:
        matches = await repo_store.search(text)
        return {
            "success": True,
            "query": text,
            "results": [
                {"id": repo.id, "name": repo.name, "url": repo.url, "score": repo.llm_score, "review": repo.llm_review}
                for repo in matches
            ],
        }

    candidates = await repo_store.get_all_candidates()
    if not candidates:
        return {"success": True, "query": text, "answer": EMPTY_STORE_GUIDANCE, "results": []}

    logger.info(
        "Running semantic search",
        extra=sanitize_log_extra(query=text, candidates=len(candidates)),
    )
    searcher = appraiser or LLMAppraiser()
    answer = await searcher.semantic_search(candidates, text)
    return {"success": True, "query": text, "answer": answer, "candidates": len(candidates)}


async def resend_unnotified(
    *,
    store: RepoStore | None = None,
    notifier: Notifier | None = None,
) -> dict[str, Any]:
    """Retry notification for saved repositories that were never marked as notified."""
    repo_store = store or SQLAlchemyRepoStore()
    job_notifier = notifier or FeishuNotifier()

    pending = await repo_store.get_unnotified()
    stats: dict[str, Any] = {"pending": len(pending), "notified": 0, "failed": 0, "errors": []}

    for repo in pending:
        try:
            await job_notifier.notify(repo)
            await repo_store.mark_notified(repo.id)
        except Exception as exc:
            stats["failed"] += 1
            stats["errors"].append(f"{repo.name}: {exc}")
            logger.warning(
                "Resend failed for repository",
                extra=sanitize_log_extra(repo=repo.name, error=str(exc)),
            )
            continue
        stats["notified"] += 1

    stats["success"] = stats["failed"] == 0
    return stats
