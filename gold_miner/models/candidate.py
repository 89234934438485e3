"""In-memory candidate repository flowing through the mining pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class CandidateRepo:
    """A discovered repository plus the fields computed by the pipeline.

    `id` is the dedup key (``github-<platform id>``) and cannot be reassigned.
    Appraisal fields stay zero-valued until an appraisal succeeds.
    """

    id: str
    name: str
    url: str
    description: str = ""
    stars: int = 0
    language: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    star_growth_rate: float = 0.0
    is_ai_programming_tool: bool = False
    llm_score: int = 0
    llm_review: str = ""
    already_notified: bool = False

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "id" and getattr(self, "id", None) is not None:
            raise AttributeError("repository id is immutable once assigned")
        if name == "stars" and value is not None and value < 0:
            value = 0
        if name == "already_notified" and not value and getattr(self, "already_notified", False):
            raise AttributeError("already_notified cannot revert to False")
        object.__setattr__(self, name, value)

    def age_days(self, now: Optional[datetime] = None) -> float:
        current = _as_aware(now or _utcnow())
        return (current - _as_aware(self.created_at)).total_seconds() / 86400

    def apply_appraisal(self, appraisal: "CandidateRepo") -> None:
        """Copy the verdict of a successful appraisal onto this working record."""
        self.is_ai_programming_tool = bool(appraisal.is_ai_programming_tool)
        self.llm_score = int(appraisal.llm_score)
        self.llm_review = appraisal.llm_review or ""

    def mark_notified(self) -> None:
        self.already_notified = True

    def qualifies(self, score_threshold: int) -> bool:
        return self.is_ai_programming_tool and self.llm_score >= score_threshold

    def __repr__(self) -> str:
        return f"<CandidateRepo {self.id} {self.name}>"


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)
