"""GitHub Gold Miner: discovers, appraises and announces new AI programming tools."""

__version__ = "1.0.0"
