from __future__ import annotations

import json
from datetime import UTC, datetime

import httpx
import pytest

from gold_miner.common.errors import NotificationError
from gold_miner.common.retry import RetryConfig
from gold_miner.models.candidate import CandidateRepo
from gold_miner.services.notifier import FeishuNotifier, build_card

WEBHOOK = "https://open.feishu.cn/open-apis/bot/v2/hook/test-hook-id"
FAST = RetryConfig(max_retries=3, initial_delay=0.001, max_delay=0.002)


def make_repo() -> CandidateRepo:
    return CandidateRepo(
        id="github-1",
        name="acme/agent-ide",
        url="https://github.com/acme/agent-ide",
        description="Agentic IDE plugin",
        stars=512,
        language="TypeScript",
        created_at=datetime(2024, 5, 1, tzinfo=UTC),
        star_growth_rate=42.5,
        is_ai_programming_tool=True,
        llm_score=88,
        llm_review="Strong autocomplete and refactoring agent.",
    )


def test_card_uses_schema_two_with_markdown_and_open_url_button() -> None:
    card = build_card(make_repo())

    assert card["msg_type"] == "interactive"
    assert card["card"]["schema"] == "2.0"
    assert "acme/agent-ide" in card["card"]["header"]["title"]["content"]

    markdown, button = card["card"]["body"]["elements"]
    assert markdown["tag"] == "markdown"
    assert "512" in markdown["content"]
    assert "2024-05-01" in markdown["content"]
    assert "88/100" in markdown["content"]
    assert "42.50 stars/day" in markdown["content"]
    assert button["behaviors"] == [{"type": "open_url", "default_url": "https://github.com/acme/agent-ide"}]


@pytest.mark.asyncio
async def test_notify_posts_card_to_webhook() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"code": 0})

    notifier = FeishuNotifier(WEBHOOK, retry_config=FAST, transport=httpx.MockTransport(handler))
    await notifier.notify(make_repo())

    assert len(seen) == 1
    assert str(seen[0].url) == WEBHOOK
    assert json.loads(seen[0].content)["card"]["schema"] == "2.0"


@pytest.mark.asyncio
async def test_notify_retries_non_200_then_raises() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    notifier = FeishuNotifier(WEBHOOK, retry_config=FAST, transport=httpx.MockTransport(handler))

    with pytest.raises(NotificationError):
        await notifier.notify(make_repo())

    assert len(calls) == 4


@pytest.mark.asyncio
async def test_notify_recovers_from_transient_failure() -> None:
    statuses = [503, 200]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(statuses.pop(0))

    notifier = FeishuNotifier(WEBHOOK, retry_config=FAST, transport=httpx.MockTransport(handler))
    await notifier.notify(make_repo())

    assert statuses == []


@pytest.mark.asyncio
async def test_missing_webhook_fails_without_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    notifier = FeishuNotifier("", transport=httpx.MockTransport(handler))

    with pytest.raises(NotificationError):
        await notifier.notify(make_repo())
