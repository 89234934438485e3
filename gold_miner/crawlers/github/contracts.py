"""Typed result contracts returned by the GitHub client."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class FetchState(str, enum.Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(slots=True)
class FetchResult(Generic[T]):
    """Outcome of one GitHub request; `data` is only meaningful for OK/EMPTY."""

    state: FetchState
    data: Optional[T] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.state == FetchState.FAILED


SearchContract = FetchResult[list[dict[str, Any]]]
CommitListContract = FetchResult[list[dict[str, Any]]]
CommitContract = FetchResult[dict[str, Any]]
