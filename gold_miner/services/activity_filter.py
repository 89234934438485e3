"""Age and commit-activity filters applied before appraisal."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Optional, Sequence
from urllib.parse import urlparse

from gold_miner.common.cancellation import CancellationToken
from gold_miner.common.errors import GitHubAPIError, OperationCancelledError
from gold_miner.common.log_sanitizer import sanitize_log_extra
from gold_miner.common.retry import RetryConfig, execute_with_retry
from gold_miner.config.settings import settings
from gold_miner.crawlers.github.contracts import FetchResult, FetchState
from gold_miner.models.candidate import CandidateRepo
from gold_miner.ports import CommitInspector

logger = logging.getLogger(__name__)

README_FILENAMES = frozenset(
    {
        "readme",
        "readme.md",
        "readme.txt",
        "readme.rst",
        "readme.markdown",
        "readme.mdown",
        "readme.mkdn",
    }
)

DEFAULT_COMMITS_TO_INSPECT = 10
# Per-call budget for commit lookups: 3 attempts, 0.5s then 1s apart.
ACTIVITY_RETRY_CONFIG = RetryConfig(max_retries=2, initial_delay=0.5)

GITHUB_HOSTS = ("github.com", "www.github.com")


def is_readme_file(filename: str) -> bool:
    """True when the path's last segment is exactly a README variant (case-insensitive)."""
    base_name = filename.strip().replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
    return base_name.lower() in README_FILENAMES


def split_github_url(url: str) -> Optional[tuple[str, str]]:
    """Extract ``(owner, repo)`` from a github.com URL, or None when it cannot be parsed."""
    try:
        parsed = urlparse(url or "")
    except ValueError:
        return None
    if (parsed.hostname or "").lower() not in GITHUB_HOSTS:
        return None

    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) < 2:
        return None
    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not owner or not repo:
        return None
    return owner, repo


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ActivityFilter:
    """Drops stale repositories and repositories whose recent history is README-only.

    Every check prefers keeping a repository over dropping it: when commit
    history cannot be inspected the candidate survives.
    """

    def __init__(
        self,
        commit_inspector: Optional[CommitInspector] = None,
        *,
        retry_config: Optional[RetryConfig] = None,
        now_provider: Callable[[], datetime] = _utcnow,
        commits_to_inspect: Optional[int] = None,
    ) -> None:
        self._inspector = commit_inspector
        self._retry_config = retry_config or ACTIVITY_RETRY_CONFIG
        self._now_provider = now_provider
        inspect_count = commits_to_inspect or getattr(settings, "ACTIVITY_COMMITS_TO_INSPECT", DEFAULT_COMMITS_TO_INSPECT)
        self._commits_to_inspect = inspect_count if inspect_count > 0 else DEFAULT_COMMITS_TO_INSPECT

    def now(self) -> datetime:
        current = self._now_provider()
        return current if current.tzinfo else current.replace(tzinfo=UTC)

    def filter_by_age(self, repos: Sequence[CandidateRepo], max_days_old: int) -> list[CandidateRepo]:
        """Keep repositories created at most `max_days_old` days ago (boundary inclusive)."""
        max_age = timedelta(days=max_days_old)
        current = self.now()
        return [repo for repo in repos if current - _as_aware(repo.created_at) <= max_age]

    async def filter_by_recent_activity(
        self,
        repos: Sequence[CandidateRepo],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> list[CandidateRepo]:
        """Drop repositories whose most recent commits only touch README files.

        Raises:
            OperationCancelledError: `cancel` fired while commits were being inspected.
        """
        if self._inspector is None:
            return list(repos)

        token = cancel or CancellationToken()
        filtered: list[CandidateRepo] = []

        for repo in repos:
            token.raise_if_cancelled()

            coordinates = split_github_url(repo.url)
            if coordinates is None:
                logger.warning(
                    "Keeping repository with unparseable URL",
                    extra=sanitize_log_extra(repo=repo.name, url=repo.url),
                )
                filtered.append(repo)
                continue

            owner, name = coordinates
            try:
                has_real_commit = await self.has_non_readme_commit(owner, name, cancel=token)
            except OperationCancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "Commit inspection failed, keeping repository",
                    extra=sanitize_log_extra(repo=f"{owner}/{name}", error=str(exc)),
                )
                filtered.append(repo)
                continue

            if has_real_commit:
                filtered.append(repo)
            else:
                logger.info(
                    "Dropping repository with README-only recent commits",
                    extra=sanitize_log_extra(repo=f"{owner}/{name}"),
                )

        return filtered

    async def has_non_readme_commit(
        self,
        owner: str,
        repo: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> bool:
        """Whether any of the most recent commits touches a file other than a README.

        A commit whose detail lookup fails, or that reports no files, counts
        as a real commit.
        """
        commits = await self._fetch(
            lambda: self._inspector.list_commits(owner, repo, per_page=self._commits_to_inspect),
            cancel=cancel,
            what=f"commit list for {owner}/{repo}",
        )
        if not commits:
            return False

        for commit in commits[: self._commits_to_inspect]:
            sha = commit.get("sha") if isinstance(commit, dict) else None
            if not sha:
                return True
            try:
                detail = await self._fetch(
                    lambda sha=sha: self._inspector.get_commit(owner, repo, sha),
                    cancel=cancel,
                    what=f"commit {sha}",
                )
            except OperationCancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "Commit detail unavailable, treating as code change",
                    extra=sanitize_log_extra(repo=f"{owner}/{repo}", sha=sha, error=str(exc)),
                )
                return True

            if self._commit_touches_code(detail):
                return True

        return False

    @staticmethod
    def _commit_touches_code(detail: Any) -> bool:
        files = detail.get("files") if isinstance(detail, dict) else None
        if not files:
            return True

        for changed in files:
            filename = changed.get("filename") if isinstance(changed, dict) else None
            if not filename:
                continue
            if not is_readme_file(filename):
                return True
        return False

    async def _fetch(self, call: Callable[[], Any], *, cancel: Optional[CancellationToken], what: str) -> Any:
        async def _attempt() -> Any:
            result: FetchResult[Any] = await call()
            if result.state == FetchState.FAILED:
                raise GitHubAPIError(f"failed to fetch {what}: {result.error or 'unknown error'}")
            if result.state == FetchState.EMPTY:
                return result.data or []
            return result.data

        return await execute_with_retry(_attempt, self._retry_config, cancel=cancel)


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)
