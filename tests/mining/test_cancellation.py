from __future__ import annotations

import asyncio

import pytest

from gold_miner.common.cancellation import CancellationToken
from gold_miner.common.errors import ContextCancelled, DeadlineExceeded, OperationCancelledError


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_cancel_propagates_to_children_with_parent_cause() -> None:
    parent = CancellationToken()
    child = parent.child(timeout=30)
    grandchild = child.child()

    parent.cancel()

    assert child.cancelled
    assert grandchild.cancelled
    assert isinstance(grandchild.cause, ContextCancelled)


def test_cancelling_child_leaves_parent_running() -> None:
    parent = CancellationToken()
    child = parent.child()

    child.cancel()

    assert child.cancelled
    assert not parent.cancelled


def test_deadline_expiry_reports_deadline_exceeded() -> None:
    clock = FakeClock()
    token = CancellationToken(timeout=10, clock=clock)

    assert not token.cancelled
    assert token.remaining() == 10

    clock.now += 10

    assert token.cancelled
    assert isinstance(token.cause, DeadlineExceeded)
    assert isinstance(token.cause, TimeoutError)


def test_child_deadline_never_outlives_parent() -> None:
    clock = FakeClock()
    parent = CancellationToken(timeout=5, clock=clock)
    child = parent.child(timeout=30)

    assert child.deadline == parent.deadline

    clock.now += 5
    assert child.cancelled


def test_raise_if_cancelled_carries_cause() -> None:
    token = CancellationToken()
    cause = RuntimeError("shutdown")
    token.cancel(cause)

    with pytest.raises(OperationCancelledError) as exc_info:
        token.raise_if_cancelled()

    assert exc_info.value.cause is cause


@pytest.mark.asyncio
async def test_sleep_completes_when_not_cancelled() -> None:
    token = CancellationToken()

    await token.sleep(0.01)

    assert not token.cancelled


@pytest.mark.asyncio
async def test_sleep_is_interrupted_by_cancel() -> None:
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.02, token.cancel)

    with pytest.raises(OperationCancelledError):
        await asyncio.wait_for(token.sleep(5), timeout=2)


@pytest.mark.asyncio
async def test_wait_returns_when_deadline_passes() -> None:
    token = CancellationToken(timeout=0.02)

    await asyncio.wait_for(token.wait(), timeout=2)

    assert isinstance(token.cause, DeadlineExceeded)
