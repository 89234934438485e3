"""Collaborator ports consumed by the mining pipeline.

The orchestrator, filter and appraisal pool depend only on these protocols;
production adapters live under `crawlers/`, `services/` and `repositories/`,
and tests supply in-memory fakes.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from gold_miner.common.cancellation import CancellationToken
from gold_miner.crawlers.github.contracts import CommitContract, CommitListContract
from gold_miner.models.candidate import CandidateRepo


class Fetcher(Protocol):
    """Discovers candidate repositories on the source platform."""

    async def get_trending(
        self,
        language: str,
        window: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> list[CandidateRepo]:
        ...

    async def get_by_topic(self, topic: str, *, cancel: Optional[CancellationToken] = None) -> list[CandidateRepo]:
        ...


class CommitInspector(Protocol):
    """Read access to recent commit history, used by the activity filter."""

    async def list_commits(self, owner: str, repo: str, *, per_page: int = 10) -> CommitListContract:
        ...

    async def get_commit(self, owner: str, repo: str, sha: str) -> CommitContract:
        ...


class Appraiser(Protocol):
    """Judges whether a repository is an AI programming tool. Must tolerate concurrent calls."""

    async def appraise(self, repo: CandidateRepo, *, cancel: Optional[CancellationToken] = None) -> CandidateRepo:
        ...


class RepoStore(Protocol):
    """Persistence and dedup lookups for discovered repositories."""

    async def exists(self, repo_id: str) -> bool:
        ...

    async def save(self, repo: CandidateRepo) -> None:
        ...

    async def mark_notified(self, repo_id: str) -> None:
        ...

    async def search(self, query: str, *, limit: int = 10) -> list[CandidateRepo]:
        ...

    async def get_all_candidates(self, *, limit: int = 100) -> list[CandidateRepo]:
        ...

    async def get_unnotified(self) -> list[CandidateRepo]:
        ...


class Notifier(Protocol):
    """Pushes a single discovered repository to a human channel."""

    async def notify(self, repo: CandidateRepo, *, cancel: Optional[CancellationToken] = None) -> None:
        ...


class SemanticSearcher(Protocol):
    """Answers natural-language questions over stored candidates."""

    async def semantic_search(self, repos: Sequence[CandidateRepo], query: str) -> str:
        ...
