"""Mining pipeline services."""

from gold_miner.services.activity_filter import ActivityFilter
from gold_miner.services.analyzer import AppraisalPool, AppraisalReport, calculate_star_growth_rate
from gold_miner.services.appraiser import LLMAppraiser
from gold_miner.services.notifier import FeishuNotifier

__all__ = [
    "ActivityFilter",
    "AppraisalPool",
    "AppraisalReport",
    "calculate_star_growth_rate",
    "LLMAppraiser",
    "FeishuNotifier",
]
