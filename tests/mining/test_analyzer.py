from __future__ import annotations

import asyncio
import dataclasses
from datetime import UTC, datetime, timedelta

import pytest

from gold_miner.common.cancellation import CancellationToken
from gold_miner.common.errors import AppraisalError, AppraisalInterruptedError
from gold_miner.models.candidate import CandidateRepo
from gold_miner.services.analyzer import AppraisalPool, calculate_star_growth_rate

NOW = datetime(2024, 5, 20, 12, 0, tzinfo=UTC)


def make_repo(name: str, *, stars: int = 0, days_old: float = 1) -> CandidateRepo:
    return CandidateRepo(
        id=f"github-{name}",
        name=f"acme/{name}",
        url=f"https://github.com/acme/{name}",
        stars=stars,
        created_at=NOW - timedelta(days=days_old),
    )


class FakeAppraiser:
    def __init__(self, *, fail: set[str] | None = None, delay: float = 0.0, hang: set[str] | None = None) -> None:
        self.fail = fail or set()
        self.hang = hang or set()
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def appraise(self, repo: CandidateRepo, *, cancel: CancellationToken | None = None) -> CandidateRepo:
        self.calls.append(repo.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if repo.id in self.hang:
                await asyncio.sleep(10)
            await asyncio.sleep(self.delay)
            if repo.id in self.fail:
                raise AppraisalError("model unavailable")
            return dataclasses.replace(repo, is_ai_programming_tool=True, llm_score=80, llm_review="solid tool")
        finally:
            self.in_flight -= 1


def test_growth_rate_is_stars_per_day_and_zero_for_brand_new_repos() -> None:
    week_old = make_repo("week", stars=70, days_old=7)
    brand_new = make_repo("new", stars=500, days_old=0)

    calculate_star_growth_rate([week_old, brand_new], now=NOW)

    assert week_old.star_growth_rate == pytest.approx(10.0)
    assert brand_new.star_growth_rate == 0.0


def test_growth_rate_never_negative_for_future_creation_dates() -> None:
    future = make_repo("future", stars=10, days_old=-1)

    calculate_star_growth_rate([future], now=NOW)

    assert future.star_growth_rate == 0.0


@pytest.mark.asyncio
async def test_pool_returns_every_repository_exactly_once() -> None:
    appraiser = FakeAppraiser(delay=0.01)
    pool = AppraisalPool(appraiser, worker_count=2, item_timeout_seconds=1)
    repos = [make_repo(f"r{i}") for i in range(5)]

    report = await pool.analyze(repos)

    assert sorted(repo.id for repo in report.repositories) == sorted(repo.id for repo in repos)
    assert report.errors == []
    assert appraiser.max_in_flight <= 2
    assert all(repo.llm_score == 80 and repo.is_ai_programming_tool for repo in report.repositories)


@pytest.mark.asyncio
async def test_pool_keeps_failed_repository_unchanged() -> None:
    appraiser = FakeAppraiser(fail={"github-r1"})
    pool = AppraisalPool(appraiser, worker_count=3, item_timeout_seconds=1)
    repos = [make_repo(f"r{i}") for i in range(4)]

    report = await pool.analyze(repos)

    by_id = {repo.id: repo for repo in report.repositories}
    assert len(by_id) == 4
    failed = by_id["github-r1"]
    assert failed.is_ai_programming_tool is False
    assert failed.llm_score == 0
    assert failed.llm_review == ""
    assert report.failed == 1
    assert "acme/r1" in report.errors[0]


@pytest.mark.asyncio
async def test_pool_times_out_single_item_without_blocking_others() -> None:
    appraiser = FakeAppraiser(hang={"github-slow"})
    pool = AppraisalPool(appraiser, worker_count=2, item_timeout_seconds=0.05)

    report = await pool.analyze([make_repo("slow"), make_repo("fast")])

    by_id = {repo.id: repo for repo in report.repositories}
    assert by_id["github-fast"].llm_score == 80
    assert by_id["github-slow"].llm_score == 0
    assert any("timed out" in error for error in report.errors)


@pytest.mark.asyncio
async def test_pool_outer_cancellation_raises_with_input_batch() -> None:
    appraiser = FakeAppraiser(hang={"github-a", "github-b"})
    pool = AppraisalPool(appraiser, worker_count=2, item_timeout_seconds=30)
    repos = [make_repo("a"), make_repo("b")]
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.05, token.cancel)

    with pytest.raises(AppraisalInterruptedError) as exc_info:
        await asyncio.wait_for(pool.analyze(repos, cancel=token), timeout=2)

    assert exc_info.value.repositories == repos
    assert appraiser.in_flight == 0


@pytest.mark.asyncio
async def test_pool_interruption_keeps_verdicts_of_finished_items() -> None:
    appraiser = FakeAppraiser(hang={"github-slow"})
    pool = AppraisalPool(appraiser, worker_count=2, item_timeout_seconds=30)
    repos = [make_repo("quick"), make_repo("slow")]
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.05, token.cancel)

    with pytest.raises(AppraisalInterruptedError) as exc_info:
        await asyncio.wait_for(pool.analyze(repos, cancel=token), timeout=2)

    quick, slow = exc_info.value.repositories
    assert quick is repos[0]
    assert quick.llm_score == 80
    assert quick.is_ai_programming_tool is True
    assert slow.llm_score == 0


@pytest.mark.asyncio
async def test_pool_with_empty_input_returns_empty_report() -> None:
    report = await AppraisalPool(FakeAppraiser()).analyze([])

    assert report.repositories == []
    assert report.errors == []


def test_worker_count_ignores_non_positive_values() -> None:
    pool = AppraisalPool(FakeAppraiser(), worker_count=4)

    pool.set_worker_count(0)
    pool.set_worker_count(-2)

    assert pool.worker_count == 4
