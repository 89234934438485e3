"""Feishu (Lark) webhook notifications for newly discovered AI programming tools."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from gold_miner.common.cancellation import CancellationToken
from gold_miner.common.errors import NotificationError, OperationCancelledError, RetryExhaustedError
from gold_miner.common.log_sanitizer import sanitize_log_extra
from gold_miner.common.retry import RetryConfig, execute_with_retry
from gold_miner.config.settings import settings
from gold_miner.models.candidate import CandidateRepo

logger = logging.getLogger(__name__)

NOTIFY_RETRY_CONFIG = RetryConfig(max_retries=3, initial_delay=0.5)


def build_card(repo: CandidateRepo) -> dict[str, Any]:
    """Interactive card payload (schema 2.0) describing one repository."""

    created = repo.created_at.strftime("%Y-%m-%d") if repo.created_at else "unknown"
    markdown = (
        f"**⭐ Stars:** {repo.stars}  |  **Language:** {repo.language or 'unknown'}  |  **Created:** {created}\n"
        f"**🏆 LLM score:** {repo.llm_score}/100\n"
        "\n"
        f"**📝 Description:**\n{repo.description or '-'}\n"
        "\n"
        f"**🤖 AI review:**\n{repo.llm_review or '-'}\n"
        "\n"
        f"**📈 Star growth:** {repo.star_growth_rate:.2f} stars/day\n"
    )

    return {
        "msg_type": "interactive",
        "card": {
            "schema": "2.0",
            "config": {"update_multi": True},
            "header": {
                "title": {"tag": "plain_text", "content": f"🚨 New AI programming tool: {repo.name}"},
                "template": "blue",
            },
            "body": {
                "direction": "vertical",
                "elements": [
                    {"tag": "markdown", "content": markdown, "text_size": "normal"},
                    {
                        "tag": "button",
                        "text": {"tag": "plain_text", "content": "🔗 View source"},
                        "type": "primary",
                        "behaviors": [{"type": "open_url", "default_url": repo.url}],
                    },
                ],
            },
        },
    }


class FeishuNotifier:
    """Posts discovery cards to a Feishu custom-bot webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        *,
        timeout_seconds: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[Any] = None,
    ) -> None:
        self._webhook_url = webhook_url if webhook_url is not None else settings.FEISHU_WEBHOOK_URL
        self._timeout_seconds = timeout_seconds
        self._retry_config = retry_config or NOTIFY_RETRY_CONFIG
        self._transport = transport
        if not self._webhook_url:
            logger.warning("Feishu webhook URL is empty; notifications will fail")

    async def notify(self, repo: CandidateRepo, *, cancel: Optional[CancellationToken] = None) -> None:
        """
        Send one repository card.

        Raises:
            NotificationError: webhook missing, or every delivery attempt failed.
            OperationCancelledError: `cancel` fired before delivery succeeded.
        """
        if not self._webhook_url:
            raise NotificationError("Feishu webhook URL is empty")

        payload = build_card(repo)

        async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:

            async def _post() -> None:
                response = await client.post(self._webhook_url, json=payload)
                if response.status_code != 200:
                    raise NotificationError(f"Feishu API returned status {response.status_code}")

            try:
                await execute_with_retry(_post, self._retry_config, cancel=cancel)
            except OperationCancelledError:
                raise
            except RetryExhaustedError as exc:
                logger.warning(
                    "Feishu notification failed",
                    extra=sanitize_log_extra(repo=repo.name, attempts=exc.attempts, error=str(exc.last_error)),
                )
                raise NotificationError("failed to send Feishu notification", cause=exc.last_error) from exc

        logger.info("Feishu notification sent", extra=sanitize_log_extra(repo=repo.name))
