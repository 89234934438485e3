"""
AWS Lambda entrypoint for GitHub Gold Miner

Triggered by EventBridge Scheduler for mining runs, or invoked directly for
search and resend requests.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from gold_miner.config.settings import settings
from gold_miner.jobs.mining import resend_unnotified, run_mining_cycle, run_search

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def lambda_handler(event: Optional[Dict[str, Any]], context: Any) -> Dict[str, Any]:
    """
    AWS Lambda entrypoint for the miner.

    Expected event payloads:
    - {"mode": "mine", "concurrency": 3, "topics": "ai-coding,dev-tools"}
    - {"mode": "search", "query": "...", "semantic": true}
    - {"mode": "resend"}

    Default is "mine" if no mode is provided.

    Returns:
        Dictionary with statusCode, mode, and result
    """
    payload = event or {}
    mode = payload.get("mode", "mine")
    logger.info(f"Lambda invoked with mode: {mode}")

    try:
        if mode == "mine":
            result = asyncio.run(
                run_mining_cycle(
                    concurrency=_parse_positive_int(payload.get("concurrency")),
                    timeout_seconds=_parse_positive_float(payload.get("timeout_seconds")),
                    topics=payload.get("topics"),
                )
            )

        elif mode == "search":
            result = asyncio.run(run_search(payload.get("query"), semantic=bool(payload.get("semantic", True))))

        elif mode == "resend":
            result = asyncio.run(resend_unnotified())

        else:
            error_msg = f"Unknown mode: {mode}"
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.info(f"Run completed for mode {mode}")

        return {
            "statusCode": 200,
            "mode": mode,
            "result": result,
        }

    except Exception as e:
        logger.error(f"Lambda execution failed: {e}", exc_info=True)
        return {
            "statusCode": 500,
            "mode": mode,
            "error": str(e),
        }


def _parse_positive_int(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def _parse_positive_float(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


# Allow local testing via `python -m gold_miner.handler`
if __name__ == "__main__":
    print("=" * 60)
    print("GitHub Gold Miner - Local Test")
    print("=" * 60)

    test_event = {"mode": "mine"}
    print(f"\nTesting with event: {test_event}")
    print("-" * 60)

    result = lambda_handler(test_event, None)

    print("\nResult:")
    print(result)
    print("=" * 60)
