"""Repository stores for mined candidates"""

from gold_miner.repositories.memory_store import InMemoryRepoStore
from gold_miner.repositories.sqlalchemy_store import SQLAlchemyRepoStore

__all__ = [
    "InMemoryRepoStore",
    "SQLAlchemyRepoStore",
]
