"""Persisted discovery record for an appraised repository."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String, Text

from gold_miner.config.database import Base


class MinedRepo(Base):
    """MinedRepo entity mapped to `mined_repos` table."""

    __tablename__ = "mined_repos"

    id = Column(String(100), primary_key=True)
    name = Column(String(200), nullable=False)
    url = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)

    stars = Column(Integer, nullable=False, default=0)
    language = Column(String(50), nullable=True)
    star_growth_rate = Column(Float, nullable=False, default=0.0)

    is_ai_programming_tool = Column(Boolean, nullable=False, default=False)
    llm_score = Column(Integer, nullable=False, default=0)
    llm_review = Column(Text, nullable=True)
    already_notified = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    discovered_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    __table_args__ = (
        Index("idx_mined_repos_llm_score", "llm_score"),
        Index("idx_mined_repos_already_notified", "already_notified"),
    )

    def __repr__(self):
        return f"<MinedRepo {self.name}>"
