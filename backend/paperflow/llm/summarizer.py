"""
Gemini Summarizer — generateContent over REST (httpx)

Request:
  POST {gemini_base_url}/models/{gemini_model}:generateContent
  header x-goog-api-key: {gemini_api_key}
  body   {"contents": [{"parts": [{"text": PROMPT + text}]}]}

Response text: candidates[0].content.parts[0].text

Retry policy:
  - Retryable:     HTTP 5xx, 429, transport errors and timeouts
  - Non-retryable: every other 4xx, a missing API key
  - Bounded loop: gemini_max_retries attempts, fixed gemini_retry_delay_ms
    between them; no backoff, no background retry
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from paperflow.core.config import Settings
from paperflow.core.exceptions import PermanentExternalAPIError, TransientExternalAPIError

logger = logging.getLogger(__name__)

PROMPT = "Summarize the following document in 5-7 concise sentences:\n\n"


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class GeminiSummarizer:
    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api_key     = settings.gemini_api_key
        self._url         = (
            f"{settings.gemini_base_url.rstrip('/')}/models/{settings.gemini_model}:generateContent"
        )
        self._max_retries = max(1, settings.gemini_max_retries)
        self._delay       = settings.gemini_retry_delay_ms / 1000
        self._client      = client or httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)
        self._sleep       = sleep

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key.strip())

    async def summarize(self, text: str) -> str | None:
        """
        Return the summary, or None when the API answered without text.

        Raises PermanentExternalAPIError immediately, and
        TransientExternalAPIError once every attempt failed.
        """
        if not self.has_credentials:
            raise PermanentExternalAPIError("Gemini API key is not configured")

        attempt = 1
        while True:
            try:
                return await self._generate(text)
            except TransientExternalAPIError as exc:
                logger.warning(
                    "Gemini attempt failed | attempt=%d/%d status=%s error=%s",
                    attempt, self._max_retries, exc.status_code, exc,
                )
                if attempt >= self._max_retries:
                    raise
            attempt += 1
            await self._sleep(self._delay)

    async def _generate(self, text: str) -> str | None:
        payload = {"contents": [{"parts": [{"text": PROMPT + text}]}]}
        try:
            resp = await self._client.post(
                self._url,
                json=payload,
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.RequestError as exc:
            raise TransientExternalAPIError(f"Gemini request failed: {exc}") from exc

        if resp.status_code >= 400:
            message = f"Gemini returned HTTP {resp.status_code}: {resp.text[:300]}"
            if _is_retryable_status(resp.status_code):
                raise TransientExternalAPIError(message, status_code=resp.status_code)
            raise PermanentExternalAPIError(message)

        try:
            summary = resp.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Gemini response had no candidate text")
            return None
        return summary.strip() or None

    async def aclose(self) -> None:
        await self._client.aclose()
