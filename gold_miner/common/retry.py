"""Retry-with-exponential-backoff executor used by every outbound call."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from tenacity import AsyncRetrying, RetryError, retry_if_exception, stop_after_attempt, wait_exponential

from gold_miner.common.cancellation import CancellationToken
from gold_miner.common.errors import InvalidInputError, OperationCancelledError, RetryExhaustedError
from gold_miner.config.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
DEFAULT_MULTIPLIER = 2.0


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Backoff knobs. Out-of-range values fall back to the defaults instead of failing."""

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_INITIAL_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    multiplier: float = DEFAULT_MULTIPLIER

    def __post_init__(self) -> None:
        if not _is_number(self.max_retries) or self.max_retries < 0:
            object.__setattr__(self, "max_retries", DEFAULT_MAX_RETRIES)
        else:
            object.__setattr__(self, "max_retries", int(self.max_retries))
        if not _is_number(self.initial_delay) or self.initial_delay <= 0:
            object.__setattr__(self, "initial_delay", DEFAULT_INITIAL_DELAY)
        if not _is_number(self.max_delay) or self.max_delay <= 0:
            object.__setattr__(self, "max_delay", DEFAULT_MAX_DELAY)
        if not _is_number(self.multiplier) or self.multiplier <= 0:
            object.__setattr__(self, "multiplier", DEFAULT_MULTIPLIER)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Wait applied before retry number `attempt` (1-based)."""
        delay = self.initial_delay * (self.multiplier ** max(attempt - 1, 0))
        return min(delay, self.max_delay)

    @classmethod
    def from_settings(cls, source: Any) -> "RetryConfig":
        return cls(
            max_retries=getattr(source, "RETRY_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            initial_delay=getattr(source, "RETRY_INITIAL_DELAY_SECONDS", DEFAULT_INITIAL_DELAY),
            max_delay=getattr(source, "RETRY_MAX_DELAY_SECONDS", DEFAULT_MAX_DELAY),
            multiplier=getattr(source, "RETRY_MULTIPLIER", DEFAULT_MULTIPLIER),
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_retryable(exc: BaseException) -> bool:
    # CancelledError is a BaseException and must never be retried.
    return isinstance(exc, Exception) and not isinstance(exc, OperationCancelledError)


async def execute_with_retry(
    operation: Callable[[], Union[T, Awaitable[T]]],
    config: Optional[RetryConfig] = None,
    *,
    cancel: Optional[CancellationToken] = None,
) -> T:
    """Run `operation` until it succeeds or the retry budget is spent.

    The first attempt runs immediately; attempt n waits
    ``min(initial_delay * multiplier ** (n - 2), max_delay)`` first. The wait
    and each attempt boundary honour `cancel`.

    Raises:
        InvalidInputError: `operation` is missing or not callable.
        OperationCancelledError: the token fired before an attempt or during a wait.
        RetryExhaustedError: every attempt failed; chains the last error.
    """

    if operation is None or not callable(operation):
        raise InvalidInputError("retry: operation cannot be None")

    cfg = config or RetryConfig.from_settings(settings)
    token = cancel or CancellationToken()
    attempts = 0

    async def _backoff(seconds: float) -> None:
        try:
            await token.sleep(seconds)
        except OperationCancelledError as exc:
            raise OperationCancelledError(exc.cause, attempts=attempts, message="retry aborted during backoff") from exc

    retrying = AsyncRetrying(
        stop=stop_after_attempt(cfg.max_attempts),
        wait=wait_exponential(multiplier=cfg.initial_delay, exp_base=cfg.multiplier, max=cfg.max_delay),
        retry=retry_if_exception(_is_retryable),
        sleep=_backoff,
        reraise=False,
    )

    try:
        async for attempt in retrying:
            if token.cancelled:
                raise OperationCancelledError(token.cause, attempts=attempts, message="retry aborted")
            with attempt:
                attempts += 1
                result = operation()
                if inspect.isawaitable(result):
                    result = await result
    except RetryError as exc:
        last_error = exc.last_attempt.exception()
        logger.debug(
            "Retry budget exhausted",
            extra={"attempts": attempts, "error": str(last_error)},
        )
        raise RetryExhaustedError(attempts, last_error) from last_error

    return result
