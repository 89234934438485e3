"""Trending and topic discovery on top of the GitHub search API."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta
from typing import Any, Callable, Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from gold_miner.common.cancellation import CancellationToken
from gold_miner.common.errors import GitHubAPIError, OperationCancelledError, RetryExhaustedError
from gold_miner.common.log_sanitizer import sanitize_log_extra
from gold_miner.common.retry import RetryConfig, execute_with_retry
from gold_miner.config.settings import settings
from gold_miner.crawlers.github.client import GitHubClient
from gold_miner.crawlers.github.contracts import FetchState
from gold_miner.models.candidate import CandidateRepo

logger = logging.getLogger(__name__)

SEARCH_RETRY_CONFIG = RetryConfig(max_retries=3, initial_delay=1.0)

DEFAULT_TRENDING_PER_PAGE = 10
DEFAULT_TOPIC_PER_PAGE = 3


def created_since(window: str, today: date) -> date:
    """Lower bound of the `created:` qualifier for a trending window."""
    normalized = (window or "").strip().lower()
    if normalized == "daily":
        return today - timedelta(days=1)
    if normalized == "monthly":
        return today - relativedelta(months=1)
    return today - timedelta(days=7)


def build_trending_query(language: str, window: str, today: date) -> str:
    qualifiers = []
    normalized_language = (language or "").strip()
    if normalized_language and normalized_language.lower() != "all":
        qualifiers.append(f"language:{normalized_language}")
    qualifiers.append(f"created:>{created_since(window, today).isoformat()}")
    return " ".join(qualifiers)


def map_search_item(item: dict[str, Any]) -> CandidateRepo:
    """Map one `/search/repositories` item onto a candidate."""
    repo_id = item.get("id")
    if repo_id is None:
        raise ValueError("Repository payload missing id")

    full_name = _pick_text(item.get("full_name")) or _pick_text(item.get("name"))
    if not full_name:
        raise ValueError("Repository payload missing full_name")

    return CandidateRepo(
        id=f"github-{repo_id}",
        name=full_name,
        url=_pick_text(item.get("html_url")) or f"https://github.com/{full_name}",
        description=_pick_text(item.get("description")) or "",
        stars=_pick_int(item.get("stargazers_count")),
        language=_pick_text(item.get("language")) or "",
        created_at=_parse_timestamp(item.get("created_at")),
        updated_at=_parse_timestamp(item.get("updated_at")),
    )


class GitHubFetcher:
    """Discovers candidate repositories through repository search."""

    def __init__(
        self,
        client: GitHubClient,
        *,
        retry_config: Optional[RetryConfig] = None,
        today_provider: Callable[[], date] = lambda: datetime.now(UTC).date(),
        trending_per_page: Optional[int] = None,
        topic_per_page: Optional[int] = None,
    ) -> None:
        self._client = client
        self._retry_config = retry_config or SEARCH_RETRY_CONFIG
        self._today_provider = today_provider
        self._trending_per_page = trending_per_page or getattr(
            settings, "MINING_TRENDING_PER_PAGE", DEFAULT_TRENDING_PER_PAGE
        )
        self._topic_per_page = topic_per_page or getattr(settings, "MINING_TOPIC_PER_PAGE", DEFAULT_TOPIC_PER_PAGE)

    async def get_trending(
        self,
        language: str,
        window: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> list[CandidateRepo]:
        """Most-starred repositories created inside the trending window."""
        query = build_trending_query(language, window, self._today_provider())
        return await self._search(query, per_page=self._trending_per_page, cancel=cancel)

    async def get_by_topic(self, topic: str, *, cancel: Optional[CancellationToken] = None) -> list[CandidateRepo]:
        """Most-starred repositories tagged with `topic`."""
        return await self._search(f"topic:{topic}", per_page=self._topic_per_page, cancel=cancel)

    async def _search(
        self,
        query: str,
        *,
        per_page: int,
        cancel: Optional[CancellationToken],
    ) -> list[CandidateRepo]:
        async def _attempt() -> list[dict[str, Any]]:
            result = await self._client.search_repositories(query, per_page=per_page, sort="stars", order="desc")
            if result.state == FetchState.FAILED:
                raise GitHubAPIError(f"repository search failed: {result.error or 'unknown error'}")
            return result.data or []

        try:
            items = await execute_with_retry(_attempt, self._retry_config, cancel=cancel)
        except OperationCancelledError:
            raise
        except RetryExhaustedError as exc:
            raise GitHubAPIError("GitHub API call failed", cause=exc.last_error) from exc

        repos: list[CandidateRepo] = []
        for item in items:
            try:
                repos.append(map_search_item(item))
            except (TypeError, ValueError) as exc:
                logger.warning(
                    "Skipping repository with malformed payload",
                    extra=sanitize_log_extra(query=query, error=str(exc)),
                )

        logger.info(
            "GitHub search completed",
            extra=sanitize_log_extra(query=query, repositories=len(repos)),
        )
        return repos


def _pick_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _pick_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(value, 0)


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, str) and raw.strip():
        parsed = date_parser.isoparse(raw)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.now(UTC)
