"""Cooperative cancellation scopes threaded through a mining cycle."""

from __future__ import annotations

import asyncio
import time
import weakref
from typing import Callable, Optional

from gold_miner.common.errors import ContextCancelled, DeadlineExceeded, OperationCancelledError


class CancellationToken:
    """Cancel signal with an optional deadline and derived child scopes.

    A child is cancelled whenever its parent is, and its deadline is never
    later than the parent's. Checking `cancelled` is cheap and can be done at
    any loop boundary; `wait()` and `sleep()` suspend until the token fires.
    """

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        parent: Optional["CancellationToken"] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._parent = parent
        self._cause: Optional[BaseException] = None
        self._event = asyncio.Event()
        self._children: "weakref.WeakSet[CancellationToken]" = weakref.WeakSet()

        deadline = clock() + timeout if timeout is not None else None
        if parent is not None and parent._deadline is not None:
            deadline = parent._deadline if deadline is None else min(deadline, parent._deadline)
        self._deadline = deadline

        if parent is not None:
            parent._children.add(self)
            if parent.cancelled:
                self._set_cause(parent.cause)

    @property
    def cancelled(self) -> bool:
        if self._cause is not None:
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self._set_cause(DeadlineExceeded("context deadline exceeded"))
            return True
        if self._parent is not None and self._parent.cancelled:
            self._set_cause(self._parent.cause)
            return True
        return False

    @property
    def cause(self) -> Optional[BaseException]:
        if not self.cancelled:
            return None
        return self._cause

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when the scope has no deadline."""
        if self._deadline is None:
            return None
        return max(self._deadline - self._clock(), 0.0)

    def cancel(self, cause: Optional[BaseException] = None) -> None:
        self._set_cause(cause or ContextCancelled("context cancelled"))

    def child(self, timeout: Optional[float] = None) -> "CancellationToken":
        return CancellationToken(timeout=timeout, parent=self, clock=self._clock)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelledError(self.cause)

    async def wait(self) -> None:
        """Block until the token is cancelled or its deadline passes."""
        while not self.cancelled:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=self.remaining())
            except TimeoutError:
                continue

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, raising OperationCancelledError if the token fires first."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self.wait(), timeout=seconds)
        except TimeoutError:
            return
        raise OperationCancelledError(self.cause)

    def _set_cause(self, cause: Optional[BaseException]) -> None:
        if self._cause is not None:
            return
        self._cause = cause or ContextCancelled("context cancelled")
        self._event.set()
        for child in list(self._children):
            child._set_cause(self._cause)
