"""Gemini REST client for repository assessment and timeline condensation.

:class:`GeminiClient` talks to the ``generateContent`` endpoint over
``httpx`` with a structured-output contract (``responseMimeType`` +
``responseSchema``). Every response is re-validated with pydantic before it
is trusted; a response that parses but misses required fields is a
non-retriable failure.

Retry policy
------------
Statuses 408, 429, 500, 503 and 504 (and transport errors) are retried up to
``max_retries`` times with full-jitter truncated exponential back-off::

    delay = uniform(0, min(60, base * 2**attempt))

where ``base`` is ``retry_base_delay`` (default 60s) for 429/503 and 2s for
every other transient failure. When retries run out after a 429/503 the
client raises :class:`~repolens.core.errors.GeminiRateLimit`; any other
exhaustion or non-retriable status raises
:class:`~repolens.core.errors.AnalysisError`.

Usage::

    client = GeminiClient(api_key=settings.gemini_api_key)
    result = await client.analyze(context)
    events = await client.summarize_timeline(commits, repo_url)
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Sequence

import httpx
from prometheus_client import Counter
from pydantic import BaseModel, ValidationError

from repolens.core.errors import AnalysisError, GeminiRateLimit, MaliciousContent
from repolens.core.fetcher import CommitInfo
from repolens.core.injection_guard import detect_injection_attempt
from repolens.core.prompts import (
    ANALYSIS_SCHEMA,
    TIMELINE_SCHEMA,
    analysis_prompt,
    system_prompt,
    timeline_prompt,
)
from repolens.core.surveyor import RepositoryContext
from repolens.schemas.analysis import AnalysisResult, TimelineEvent, TimelineResult

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-pro"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
MAX_TIMELINE_EVENTS = 10

_RETRYABLE_HTTP_STATUSES = frozenset({408, 429, 500, 503, 504})
_OVERLOAD_STATUSES = frozenset({429, 503})
_SHORT_BASE_DELAY = 2.0
_MAX_DELAY = 60.0

ai_retries_total = Counter(
    "repolens_ai_retries_total",
    "Generation provider calls retried after a transient failure",
    ["status"],
)
ai_requests_total = Counter(
    "repolens_ai_requests_total",
    "Generation provider calls by outcome",
    ["operation", "outcome"],
)


def backoff_delay(attempt: int, status: int | None, overload_base: float) -> float:
    """Full-jitter truncated exponential back-off for the *attempt*-th retry (0-based)."""
    base = overload_base if status in _OVERLOAD_STATUSES else _SHORT_BASE_DELAY
    return random.uniform(0, min(_MAX_DELAY, base * (2**attempt)))  # noqa: S311


class GeminiClient:
    """Structured-output calls against one Gemini model.

    Args:
        api_key: Provider API key.
        model: Model name, e.g. ``gemini-2.5-pro``.
        base_url: API root up to and including the version segment.
        max_retries: Retries after the first attempt for transient failures.
        retry_base_delay: Back-off base in seconds for 429/503 responses.
        temperature: Sampling temperature.
        max_output_tokens: Output token cap per call.
        timeout: Per-request timeout in seconds.
        http_client: Optional shared ``httpx.AsyncClient``; one is created
            (and owned) when omitted.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        max_retries: int = 3,
        retry_base_delay: float = 60.0,
        temperature: float = 0.7,
        max_output_tokens: int = 8192,
        timeout: float = 300.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def analyze(self, context: RepositoryContext) -> AnalysisResult:
        """Assess the surveyed repository.

        Raises:
            MaliciousContent: The README or config files look like a
                prompt-injection attempt; nothing is sent to the provider.
            GeminiRateLimit: The provider stayed overloaded through all retries.
            AnalysisError: Any other provider failure or an invalid response.
        """
        if detect_injection_attempt(context):
            raise MaliciousContent()

        text = await self._generate(
            analysis_prompt(context),
            ANALYSIS_SCHEMA,
            operation="analyze",
            system=system_prompt(),
        )
        result = self._validate(text, AnalysisResult, operation="analyze")
        logger.info(
            "Analysis complete for %s: skill_level=%s tech_stack=%d",
            context.repo_url,
            result.skill_level,
            len(result.tech_stack),
        )
        return result

    async def summarize_timeline(
        self,
        commits: Sequence[CommitInfo],
        repo_url: str,
    ) -> list[TimelineEvent]:
        """Condense *commits* (newest first) into at most 10 dated events, oldest first."""
        if not commits:
            return []
        text = await self._generate(
            timeline_prompt(commits, repo_url),
            TIMELINE_SCHEMA,
            operation="timeline",
        )
        result = self._validate(text, TimelineResult, operation="timeline")
        events = sorted(result.timeline, key=lambda event: event.date)
        return events[:MAX_TIMELINE_EVENTS]

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _build_request(self, prompt: str, schema: dict, system: str | None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self._temperature,
                "topP": 0.95,
                "topK": 40,
                "maxOutputTokens": self._max_output_tokens,
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        return body

    async def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        """Single ``generateContent`` call.

        Raises :class:`httpx.HTTPStatusError` on a non-2xx response and
        :class:`httpx.RequestError` on a network-level failure.
        """
        response = await self._http.post(
            f"{self._base_url}/models/{self._model}:generateContent",
            json=body,
            headers={"x-goog-api-key": self._api_key},
        )
        response.raise_for_status()
        return response.json()

    async def _generate(
        self,
        prompt: str,
        schema: dict,
        *,
        operation: str,
        system: str | None = None,
    ) -> str:
        body = self._build_request(prompt, schema, system)
        last_status: int | None = None

        for attempt in range(self._max_retries + 1):
            try:
                payload = await self._post(body)
                ai_requests_total.labels(operation=operation, outcome="success").inc()
                return _extract_text(payload)
            except httpx.HTTPStatusError as exc:
                last_status = exc.response.status_code
                if last_status not in _RETRYABLE_HTTP_STATUSES:
                    ai_requests_total.labels(operation=operation, outcome="rejected").inc()
                    logger.warning(
                        "Gemini %s failed (HTTP %d, non-retryable): %s",
                        operation,
                        last_status,
                        exc.response.text[:300],
                    )
                    raise AnalysisError(f"AI provider returned HTTP {last_status}") from exc
                logger.warning(
                    "Gemini %s failed (HTTP %d) attempt=%d/%d",
                    operation,
                    last_status,
                    attempt + 1,
                    self._max_retries + 1,
                )
            except httpx.TimeoutException as exc:
                last_status = 408
                logger.warning(
                    "Gemini %s timed out attempt=%d/%d: %s",
                    operation,
                    attempt + 1,
                    self._max_retries + 1,
                    exc,
                )
            except httpx.RequestError as exc:
                last_status = None
                logger.warning(
                    "Gemini %s network error attempt=%d/%d: %s",
                    operation,
                    attempt + 1,
                    self._max_retries + 1,
                    exc,
                )

            if attempt < self._max_retries:
                ai_retries_total.labels(status=str(last_status or "network")).inc()
                delay = backoff_delay(attempt, last_status, self._retry_base_delay)
                logger.info(
                    "Retrying Gemini %s in %.2fs (attempt %d/%d)",
                    operation,
                    delay,
                    attempt + 2,
                    self._max_retries + 1,
                )
                await asyncio.sleep(delay)

        ai_requests_total.labels(operation=operation, outcome="exhausted").inc()
        logger.error(
            "Gemini %s exhausted all %d attempts (last status %s)",
            operation,
            self._max_retries + 1,
            last_status,
        )
        if last_status in _OVERLOAD_STATUSES:
            raise GeminiRateLimit(f"AI provider overloaded (HTTP {last_status}) after retries")
        raise AnalysisError(f"AI provider unavailable after {self._max_retries + 1} attempts")

    @staticmethod
    def _validate(text: str, model: type[BaseModel], *, operation: str) -> Any:
        try:
            return model.model_validate(json.loads(text))
        except (ValueError, ValidationError) as exc:
            ai_requests_total.labels(operation=operation, outcome="invalid").inc()
            logger.warning("Gemini %s returned an invalid response: %s", operation, exc)
            raise AnalysisError("AI provider response did not match the expected shape") from exc


def _extract_text(payload: dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate."""
    candidates = payload.get("candidates") or []
    if not candidates:
        reason = (payload.get("promptFeedback") or {}).get("blockReason")
        raise AnalysisError(f"AI provider returned no candidates (block reason: {reason})")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts)
    if not text.strip():
        raise AnalysisError("AI provider returned an empty response")
    return text
