"""LLM appraisal of candidate repositories and natural-language search over stored ones"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

import google.generativeai as genai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from gold_miner.common.cancellation import CancellationToken
from gold_miner.common.errors import AppraisalError, AppraisalParseError, InvalidInputError
from gold_miner.common.log_sanitizer import sanitize_log_extra
from gold_miner.config.settings import settings
from gold_miner.models.candidate import CandidateRepo

logger = logging.getLogger(__name__)

LLMCall = Callable[[str], Awaitable[str]]

SYSTEM_PROMPT = "You are a senior developer-tools analyst who evaluates open-source repositories."
DESCRIPTION_PREVIEW_CHARS = 1000
SEARCH_CONTEXT_LIMIT = 50


class LLMAppraiser:
    """Scores repositories with the configured LLM provider.

    Pass `llm_call` to bypass the provider SDKs entirely; it receives the
    full prompt and must return the raw model text.
    """

    def __init__(
        self,
        *,
        provider: Optional[str] = None,
        llm_call: Optional[LLMCall] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        self.provider = (provider or settings.LLM_PROVIDER or "gemini").lower()
        self._max_tokens = max_tokens or getattr(settings, "LLM_MAX_TOKENS", 2000)
        self._llm_call = llm_call

        if llm_call is not None:
            return

        if self.provider == "openai":
            if not settings.OPENAI_API_KEY:
                raise InvalidInputError("OPENAI_API_KEY is required when LLM_PROVIDER is 'openai'")
            self.openai_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        elif self.provider == "anthropic":
            if not settings.ANTHROPIC_API_KEY:
                raise InvalidInputError("ANTHROPIC_API_KEY is required when LLM_PROVIDER is 'anthropic'")
            self.anthropic_client = AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        elif self.provider == "gemini":
            if not settings.GEMINI_API_KEY:
                raise InvalidInputError("GEMINI_API_KEY is required when LLM_PROVIDER is 'gemini'")
            genai.configure(api_key=settings.GEMINI_API_KEY)
            self.gemini_model = genai.GenerativeModel(settings.GEMINI_MODEL)
        else:
            raise InvalidInputError(f"Unsupported LLM provider: {self.provider}")

    async def appraise(self, repo: CandidateRepo, *, cancel: Optional[CancellationToken] = None) -> CandidateRepo:
        """
        Ask the LLM whether `repo` is an AI programming tool and how promising it is.

        Args:
            repo: Candidate to appraise; it is not modified.
            cancel: Optional scope checked before the provider call.

        Returns:
            A copy of `repo` with `is_ai_programming_tool`, `llm_score` and `llm_review` filled.

        Raises:
            AppraisalError: the provider call failed.
            AppraisalParseError: the model answered without a usable JSON verdict.
        """
        if cancel is not None:
            cancel.raise_if_cancelled()

        content = await self._complete(self._build_prompt(repo), temperature=0.2)
        verdict = self._parse_verdict(content)

        logger.debug(
            "Appraised repository",
            extra=sanitize_log_extra(repo=repo.name, score=verdict["score"], ai_tool=verdict["is_ai_programming_tool"]),
        )
        return dataclasses.replace(
            repo,
            is_ai_programming_tool=verdict["is_ai_programming_tool"],
            llm_score=verdict["score"],
            llm_review=verdict["review"],
        )

    async def semantic_search(self, repos: Sequence[CandidateRepo], query: str) -> str:
        """Answer a natural-language question using stored candidates as context."""
        if not query or not query.strip():
            raise InvalidInputError("search query cannot be empty")
        if not repos:
            return "No repositories have been mined yet."

        content = await self._complete(self._build_search_prompt(repos, query.strip()), temperature=0.3)
        answer = (content or "").strip()
        if not answer:
            raise AppraisalParseError("LLM returned an empty search answer")
        return answer

    async def _complete(self, prompt: str, *, temperature: float) -> str:
        try:
            if self._llm_call is not None:
                return await self._llm_call(prompt)
            if self.provider == "openai":
                return await self._complete_openai(prompt, temperature)
            if self.provider == "anthropic":
                return await self._complete_anthropic(prompt, temperature)
            return await self._complete_gemini(prompt, temperature)
        except AppraisalError:
            raise
        except Exception as exc:
            logger.error(
                "LLM request failed",
                extra=sanitize_log_extra(provider=self.provider, error=str(exc)),
            )
            raise AppraisalError(f"{self.provider} request failed", cause=exc) from exc

    async def _complete_openai(self, prompt: str, temperature: float) -> str:
        response = await self.openai_client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=self._max_tokens,
        )
        return response.choices[0].message.content or ""

    async def _complete_anthropic(self, prompt: str, temperature: float) -> str:
        response = await self.anthropic_client.messages.create(
            model=settings.ANTHROPIC_MODEL,
            max_tokens=self._max_tokens,
            temperature=temperature,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text if response.content else ""

    async def _complete_gemini(self, prompt: str, temperature: float) -> str:
        # Gemini SDK is sync, so run it in the default executor
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: self.gemini_model.generate_content(
                prompt,
                generation_config=genai.types.GenerationConfig(
                    temperature=temperature,
                    max_output_tokens=self._max_tokens,
                ),
            ),
        )
        return response.text

    def _build_prompt(self, repo: CandidateRepo) -> str:
        description = (repo.description or "")[:DESCRIPTION_PREVIEW_CHARS]
        return f"""Evaluate this newly created GitHub repository:

Name: {repo.name}
URL: {repo.url}
Language: {repo.language or "unknown"}
Stars: {repo.stars}
Description: {description}

Decide whether it is an AI programming tool: a coding assistant, code
generator, AI-powered IDE or editor extension, agent framework for software
development, or developer tooling built around LLMs.

Provide a JSON response with:
1. "is_ai_programming_tool": true or false
2. "score": integer 0-100 rating its usefulness and potential for developers
3. "review": a short review (2-3 sentences) of what it does and why it matters

Response format:
{{
  "is_ai_programming_tool": true,
  "score": 75,
  "review": "..."
}}

Return only the JSON object, without markdown code fences."""

    def _build_search_prompt(self, repos: Sequence[CandidateRepo], query: str) -> str:
        catalog = ""
        for i, repo in enumerate(repos[:SEARCH_CONTEXT_LIMIT], 1):
            catalog += (
                f"{i}. {repo.name} ({repo.url}) - stars: {repo.stars}, score: {repo.llm_score}\n"
                f"   Description: {(repo.description or '')[:300]}\n"
                f"   Review: {(repo.llm_review or '')[:300]}\n"
            )

        return f"""You help developers find tools among recently discovered GitHub repositories.

Repositories:
{catalog}
Question: {query}

Recommend the repositories that best answer the question, most relevant
first, each with its URL and one sentence explaining the match. If none of
them fit, say so plainly."""

    def _parse_verdict(self, content: str) -> dict[str, Any]:
        raw = (content or "").strip()
        if not raw:
            raise AppraisalParseError("LLM returned an empty appraisal")

        start = raw.find("{")
        end = raw.rfind("}")
        if start == -1 or end <= start:
            raise AppraisalParseError(f"no JSON object in LLM response: {raw[:200]}")

        try:
            data = json.loads(raw[start : end + 1])
        except json.JSONDecodeError as exc:
            raise AppraisalParseError(f"invalid JSON in LLM response: {raw[start:end + 1][:200]}", cause=exc) from exc
        if not isinstance(data, dict):
            raise AppraisalParseError("LLM appraisal is not a JSON object")

        try:
            score = int(round(float(data.get("score", 0))))
        except (TypeError, ValueError) as exc:
            raise AppraisalParseError(f"invalid score in LLM response: {data.get('score')!r}", cause=exc) from exc

        return {
            "is_ai_programming_tool": _as_bool(data.get("is_ai_programming_tool", False)),
            "score": max(0, min(100, score)),
            "review": str(data.get("review") or "").strip(),
        }


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)
