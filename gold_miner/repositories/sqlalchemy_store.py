"""SQLAlchemy-backed store for mined repositories."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Callable, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from gold_miner.common.errors import StorageError
from gold_miner.common.log_sanitizer import sanitize_log_extra
from gold_miner.config.database import create_session
from gold_miner.models.candidate import CandidateRepo
from gold_miner.models.mined_repo import MinedRepo

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 10
CANDIDATE_LIMIT = 100


def to_row_values(repo: CandidateRepo) -> dict[str, Any]:
    return {
        "id": repo.id,
        "name": repo.name,
        "url": repo.url,
        "description": repo.description,
        "stars": repo.stars,
        "language": repo.language,
        "star_growth_rate": repo.star_growth_rate,
        "is_ai_programming_tool": repo.is_ai_programming_tool,
        "llm_score": repo.llm_score,
        "llm_review": repo.llm_review,
        "created_at": repo.created_at,
        "updated_at": repo.updated_at,
    }


def from_row(row: MinedRepo) -> CandidateRepo:
    return CandidateRepo(
        id=row.id,
        name=row.name,
        url=row.url,
        description=row.description or "",
        stars=row.stars or 0,
        language=row.language or "",
        created_at=_as_aware(row.created_at),
        updated_at=_as_aware(row.updated_at),
        star_growth_rate=row.star_growth_rate or 0.0,
        is_ai_programming_tool=bool(row.is_ai_programming_tool),
        llm_score=row.llm_score or 0,
        llm_review=row.llm_review or "",
        already_notified=bool(row.already_notified),
    )


class SQLAlchemyRepoStore:
    """`RepoStore` over the `mined_repos` table; one session per call."""

    def __init__(self, *, session_factory: Callable[[], Any] = create_session) -> None:
        self._session_factory = session_factory

    async def exists(self, repo_id: str) -> bool:
        db = self._session_factory()
        try:
            return db.query(MinedRepo.id).filter(MinedRepo.id == repo_id).first() is not None
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to check repository {repo_id}", cause=exc) from exc
        finally:
            db.close()

    async def save(self, repo: CandidateRepo) -> None:
        """Insert or update by id. An existing row keeps its notified flag and discovery time."""
        db = self._session_factory()
        try:
            values = to_row_values(repo)
            existing = db.get(MinedRepo, repo.id)
            if existing is None:
                db.add(MinedRepo(**values, already_notified=repo.already_notified))
            else:
                for field_name, value in values.items():
                    setattr(existing, field_name, value)
                if repo.already_notified:
                    existing.already_notified = True
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning(
                "Failed to save repository",
                extra=sanitize_log_extra(repo=repo.name, error=str(exc)),
            )
            raise StorageError(f"failed to save repository {repo.id}", cause=exc) from exc
        finally:
            db.close()

    async def mark_notified(self, repo_id: str) -> None:
        db = self._session_factory()
        try:
            db.query(MinedRepo).filter(MinedRepo.id == repo_id).update(
                {MinedRepo.already_notified: True},
                synchronize_session=False,
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"failed to mark repository {repo_id} as notified", cause=exc) from exc
        finally:
            db.close()

    async def search(self, query: str, *, limit: int = SEARCH_LIMIT) -> list[CandidateRepo]:
        """Substring match on name, description or review; highest score first."""
        pattern = f"%{query}%"
        db = self._session_factory()
        try:
            rows = (
                db.query(MinedRepo)
                .filter(
                    or_(
                        MinedRepo.name.like(pattern),
                        MinedRepo.description.like(pattern),
                        MinedRepo.llm_review.like(pattern),
                    )
                )
                .order_by(MinedRepo.llm_score.desc())
                .limit(limit)
                .all()
            )
            return [from_row(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StorageError("failed to search repositories", cause=exc) from exc
        finally:
            db.close()

    async def get_all_candidates(self, *, limit: int = CANDIDATE_LIMIT) -> list[CandidateRepo]:
        db = self._session_factory()
        try:
            rows = db.query(MinedRepo).order_by(MinedRepo.created_at.desc()).limit(limit).all()
            return [from_row(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StorageError("failed to load candidates", cause=exc) from exc
        finally:
            db.close()

    async def get_unnotified(self) -> list[CandidateRepo]:
        db = self._session_factory()
        try:
            rows = (
                db.query(MinedRepo)
                .filter(MinedRepo.already_notified.is_(False))
                .order_by(MinedRepo.llm_score.desc())
                .all()
            )
            return [from_row(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StorageError("failed to load unnotified repositories", cause=exc) from exc
        finally:
            db.close()


def _as_aware(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.now(UTC)
    return value if value.tzinfo else value.replace(tzinfo=UTC)
