"""Process-local `RepoStore` for dry runs and tests."""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime

from gold_miner.models.candidate import CandidateRepo


class InMemoryRepoStore:
    """Dict-backed store with the same ordering and upsert rules as the SQL store."""

    def __init__(self) -> None:
        self._rows: dict[str, CandidateRepo] = {}
        self._discovered_at: dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._rows)

    async def exists(self, repo_id: str) -> bool:
        return repo_id in self._rows

    async def save(self, repo: CandidateRepo) -> None:
        existing = self._rows.get(repo.id)
        already_notified = repo.already_notified or (existing is not None and existing.already_notified)
        self._rows[repo.id] = dataclasses.replace(repo, already_notified=already_notified)
        self._discovered_at.setdefault(repo.id, datetime.now(UTC))

    async def mark_notified(self, repo_id: str) -> None:
        row = self._rows.get(repo_id)
        if row is not None:
            row.mark_notified()

    async def search(self, query: str, *, limit: int = 10) -> list[CandidateRepo]:
        needle = query or ""
        matches = [
            repo
            for repo in self._rows.values()
            if needle in repo.name or needle in repo.description or needle in repo.llm_review
        ]
        matches.sort(key=lambda repo: repo.llm_score, reverse=True)
        return [dataclasses.replace(repo) for repo in matches[:limit]]

    async def get_all_candidates(self, *, limit: int = 100) -> list[CandidateRepo]:
        rows = sorted(self._rows.values(), key=lambda repo: repo.created_at, reverse=True)
        return [dataclasses.replace(repo) for repo in rows[:limit]]

    async def get_unnotified(self) -> list[CandidateRepo]:
        rows = [repo for repo in self._rows.values() if not repo.already_notified]
        rows.sort(key=lambda repo: repo.llm_score, reverse=True)
        return [dataclasses.replace(repo) for repo in rows]

    def discovered_at(self, repo_id: str) -> datetime | None:
        return self._discovered_at.get(repo_id)
