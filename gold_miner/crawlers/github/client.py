"""Async GitHub REST client used for repository search and commit inspection."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from gold_miner.common.log_sanitizer import sanitize_log_extra
from gold_miner.config.settings import settings
from gold_miner.crawlers.github.contracts import (
    CommitContract,
    CommitListContract,
    FetchResult,
    FetchState,
    SearchContract,
)

logger = logging.getLogger(__name__)


class _RateLimited(Exception):
    """Raised inside the retry loop when GitHub throttles a request."""

    def __init__(self, status_code: int, wait_seconds: float) -> None:
        super().__init__(f"GitHub rate limit hit (HTTP {status_code})")
        self.status_code = status_code
        self.wait_seconds = wait_seconds


class GitHubClient:
    """Thin typed wrapper over the endpoints the miner needs.

    Throttled requests (429, or 403 with an exhausted quota) are retried after
    the wait GitHub asks for; every other failure comes back as a FAILED
    `FetchResult` instead of raising.
    """

    BASE_URL = "https://api.github.com"
    API_VERSION = "2022-11-28"

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        rate_limit_buffer_seconds: Optional[int] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._token = token or settings.GITHUB_TOKEN
        self._timeout = timeout_seconds or getattr(settings, "GITHUB_TIMEOUT_SECONDS", 30.0)
        self._attempts = max_retries or getattr(settings, "GITHUB_MAX_RETRIES", 3)
        self._backoff_base = backoff_base_seconds or getattr(settings, "GITHUB_BACKOFF_BASE_SECONDS", 1.0)
        self._backoff_max = backoff_max_seconds or getattr(settings, "GITHUB_BACKOFF_MAX_SECONDS", 16.0)
        self._reset_buffer = rate_limit_buffer_seconds or getattr(settings, "GITHUB_RATE_LIMIT_BUFFER_SECONDS", 2)
        self._base_url = base_url or self.BASE_URL
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubClient":
        self._session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def search_repositories(
        self,
        query: str,
        *,
        page: int = 1,
        per_page: int = 10,
        sort: str = "stars",
        order: str = "desc",
    ) -> SearchContract:
        """`/search/repositories` items for `query`; EMPTY when nothing matches."""
        result = await self._get_json(
            "/search/repositories",
            params={"q": query, "page": page, "per_page": per_page, "sort": sort, "order": order},
        )
        if result.failed:
            return result

        items = result.data.get("items") if isinstance(result.data, dict) else None
        if not isinstance(items, list) or not items:
            return FetchResult(state=FetchState.EMPTY, data=[], status_code=result.status_code)
        return FetchResult(state=FetchState.OK, data=items, status_code=result.status_code)

    async def list_commits(self, owner: str, repo: str, *, per_page: int = 10) -> CommitListContract:
        """Newest commits on the default branch."""
        result = await self._get_json(f"/repos/{owner}/{repo}/commits", params={"per_page": per_page})
        if result.failed:
            return result
        if not isinstance(result.data, list) or not result.data:
            return FetchResult(state=FetchState.EMPTY, data=[], status_code=result.status_code)
        return result

    async def get_commit(self, owner: str, repo: str, sha: str) -> CommitContract:
        """One commit with its changed `files`."""
        result = await self._get_json(f"/repos/{owner}/{repo}/commits/{sha}")
        if result.failed:
            return result
        if not isinstance(result.data, dict):
            return FetchResult(state=FetchState.EMPTY, data={}, status_code=result.status_code)
        return result

    async def _get_json(self, path: str, *, params: Optional[dict[str, Any]] = None) -> FetchResult[Any]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=self._backoff_base, max=self._backoff_max),
            retry=retry_if_exception_type(_RateLimited),
            reraise=True,
        )
        try:
            response = await retrying(self._send, path, params)
            payload = response.json()
        except _RateLimited as exc:
            logger.warning(
                "GitHub rate limit retries exhausted",
                extra=sanitize_log_extra(path=path, params=params, status_code=exc.status_code),
            )
            return FetchResult(state=FetchState.FAILED, status_code=exc.status_code, error=str(exc))
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            logger.warning(
                "GitHub returned an error status",
                extra=sanitize_log_extra(path=path, params=params, status_code=status_code),
            )
            return FetchResult(state=FetchState.FAILED, status_code=status_code, error=f"HTTP {status_code}")
        except httpx.HTTPError as exc:
            logger.warning(
                "GitHub request failed",
                extra=sanitize_log_extra(path=path, params=params, error=str(exc)),
            )
            return FetchResult(state=FetchState.FAILED, error=str(exc) or exc.__class__.__name__)
        except ValueError as exc:
            logger.warning(
                "GitHub response was not valid JSON",
                extra=sanitize_log_extra(path=path, error=str(exc)),
            )
            return FetchResult(state=FetchState.FAILED, status_code=response.status_code, error="invalid JSON payload")

        return FetchResult(state=FetchState.OK, data=payload, status_code=response.status_code)

    async def _send(self, path: str, params: Optional[dict[str, Any]]) -> httpx.Response:
        response = await self._session().get(path, params=params)
        if self._is_rate_limited(response):
            wait_seconds = self._rate_limit_wait(response.headers)
            logger.warning(
                "GitHub rate limit encountered",
                extra=sanitize_log_extra(path=path, status_code=response.status_code, retry_after_seconds=wait_seconds),
            )
            if wait_seconds > 0:
                await asyncio.sleep(wait_seconds)
            raise _RateLimited(response.status_code, wait_seconds)
        response.raise_for_status()
        return response

    def _session(self) -> httpx.AsyncClient:
        if self._http is None:
            headers = {
                "Accept": "application/vnd.github+json",
                "User-Agent": settings.USER_AGENT,
                "X-GitHub-Api-Version": self.API_VERSION,
            }
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        return response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"

    def _rate_limit_wait(self, headers: httpx.Headers) -> float:
        """Seconds to wait: `Retry-After` first, then the quota reset time, else the base backoff."""
        retry_after = headers.get("retry-after")
        if retry_after is not None:
            try:
                return max(float(retry_after), 0.0)
            except ValueError:
                pass

        reset_at = headers.get("x-ratelimit-reset")
        if reset_at is not None:
            try:
                return float(max(int(reset_at) - int(time.time()) + self._reset_buffer, 0))
            except ValueError:
                pass

        return self._backoff_base
