from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any

import pytest

from gold_miner import handler
from gold_miner.common.errors import NotificationError
from gold_miner.jobs.mining import (
    EMPTY_QUERY_GUIDANCE,
    EMPTY_STORE_GUIDANCE,
    normalize_topics,
    resend_unnotified,
    run_mining_cycle,
    run_search,
)
from gold_miner.models.candidate import CandidateRepo
from gold_miner.repositories import InMemoryRepoStore


def make_repo(name: str, *, score: int = 70) -> CandidateRepo:
    return CandidateRepo(
        id=f"github-{name}",
        name=f"acme/{name}",
        url=f"https://github.com/acme/{name}",
        description=f"{name} assistant",
        created_at=datetime(2024, 5, 1, tzinfo=UTC),
        is_ai_programming_tool=True,
        llm_score=score,
    )


class FakeOrchestrator:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def run_cycle(self, *, cancel=None, concurrency=None):
        self.calls.append({"cancel": cancel, "concurrency": concurrency})
        return {"success": True, "processed": 0}


class FakeSearcher:
    def __init__(self) -> None:
        self.calls: list[tuple[int, str]] = []

    async def semantic_search(self, repos, query: str) -> str:
        self.calls.append((len(repos), query))
        return "acme/alpha matches"


class FakeNotifier:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.sent: list[str] = []

    async def notify(self, repo: CandidateRepo, *, cancel=None) -> None:
        if repo.id in self.failing:
            raise NotificationError("webhook rejected")
        self.sent.append(repo.id)


def test_normalize_topics_dedupes_and_defaults() -> None:
    assert normalize_topics(None) == ["ai-coding", "ide-extension", "dev-tools"]
    assert normalize_topics("AI-Coding, dev-tools,ai-coding,") == ["ai-coding", "dev-tools"]
    assert normalize_topics(["llm", " llm "]) == ["llm"]
    assert normalize_topics("", default=["x"]) == ["x"]


def test_run_mining_cycle_applies_cycle_deadline_and_concurrency() -> None:
    orchestrator = FakeOrchestrator()

    result = asyncio.run(run_mining_cycle(orchestrator=orchestrator, concurrency=5, timeout_seconds=120))

    assert result["success"] is True
    call = orchestrator.calls[0]
    assert call["concurrency"] == 5
    assert 0 < call["cancel"].remaining() <= 120


def test_run_search_guides_on_empty_query_and_empty_store() -> None:
    searcher = FakeSearcher()

    blank = asyncio.run(run_search("  ", store=InMemoryRepoStore(), appraiser=searcher))
    empty = asyncio.run(run_search("code review bot", store=InMemoryRepoStore(), appraiser=searcher))

    assert blank["answer"] == EMPTY_QUERY_GUIDANCE
    assert empty["answer"] == EMPTY_STORE_GUIDANCE
    assert searcher.calls == []


@pytest.mark.asyncio
async def test_run_search_semantic_and_keyword_modes() -> None:
    store = InMemoryRepoStore()
    await store.save(make_repo("alpha", score=90))
    await store.save(make_repo("beta", score=60))
    searcher = FakeSearcher()

    semantic = await run_search("which one reviews code?", store=store, appraiser=searcher)
    keyword = await run_search("beta", store=store, appraiser=searcher, semantic=False)

    assert semantic["answer"] == "acme/alpha matches"
    assert searcher.calls == [(2, "which one reviews code?")]
    assert [item["name"] for item in keyword["results"]] == ["acme/beta"]


@pytest.mark.asyncio
async def test_resend_unnotified_marks_only_delivered_repositories() -> None:
    store = InMemoryRepoStore()
    await store.save(make_repo("ok"))
    await store.save(make_repo("broken"))
    notifier = FakeNotifier(failing={"github-broken"})

    stats = await resend_unnotified(store=store, notifier=notifier)

    assert stats["pending"] == 2
    assert stats["notified"] == 1
    assert stats["failed"] == 1
    assert stats["success"] is False
    assert [repo.id for repo in await store.get_unnotified()] == ["github-broken"]


def test_lambda_handler_dispatches_mine_mode(monkeypatch) -> None:
    captured: dict[str, Any] = {}

    async def fake_run_mining_cycle(**kwargs):
        captured.update(kwargs)
        return {"success": True, "processed": 2}

    monkeypatch.setattr(handler, "run_mining_cycle", fake_run_mining_cycle)

    response = handler.lambda_handler({"mode": "mine", "concurrency": "4", "topics": "ai-coding"}, None)

    assert response["statusCode"] == 200
    assert response["result"]["processed"] == 2
    assert captured["concurrency"] == 4
    assert captured["topics"] == "ai-coding"


def test_lambda_handler_rejects_unknown_mode() -> None:
    response = handler.lambda_handler({"mode": "dig"}, None)

    assert response["statusCode"] == 500
    assert "Unknown mode" in response["error"]


def test_lambda_handler_parses_string_timeout(monkeypatch) -> None:
    captured: list[Any] = []

    async def fake_run_mining_cycle(**kwargs):
        captured.append(kwargs["timeout_seconds"])
        return {"success": True}

    monkeypatch.setattr(handler, "run_mining_cycle", fake_run_mining_cycle)

    ok = handler.lambda_handler({"mode": "mine", "timeout_seconds": "60"}, None)
    bad = handler.lambda_handler({"mode": "mine", "timeout_seconds": "soon"}, None)
    negative = handler.lambda_handler({"mode": "mine", "timeout_seconds": -5}, None)

    assert [ok["statusCode"], bad["statusCode"], negative["statusCode"]] == [200, 200, 200]
    assert captured == [60.0, None, None]
