"""Domain and database models"""

from gold_miner.models.candidate import CandidateRepo
from gold_miner.models.mined_repo import MinedRepo

__all__ = [
    "CandidateRepo",
    "MinedRepo",
]
