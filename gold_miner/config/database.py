"""Database configuration and session management."""

from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from gold_miner.config.settings import settings

Base = declarative_base()

# Bound lazily so importing models never opens a connection.
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


@lru_cache(maxsize=None)
def get_engine(database_url: Optional[str] = None) -> Engine:
    url = database_url or settings.DATABASE_URL
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


def create_session(database_url: Optional[str] = None) -> Session:
    return SessionLocal(bind=get_engine(database_url))


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all tables. Safe to call repeatedly."""
    from gold_miner.models import mined_repo  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
