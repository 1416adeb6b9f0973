"""OpenAI chat completions provider, also used for vLLM and other compatible servers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from imucalc.core.config import LLMConfig
from imucalc.llm.client import LLMClient

logger = logging.getLogger(__name__)

_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
_MAX_DELAY = 8.0


def _backoff(attempt: int, retry_after: str | None) -> float:
    """Seconds to wait after failed ``attempt``; a numeric Retry-After wins."""
    if retry_after:
        try:
            return min(max(float(retry_after), 0.0), _MAX_DELAY)
        except ValueError:
            logger.debug("Ignoring non-numeric Retry-After %r", retry_after)
    return min(0.5 * 2 ** (attempt - 1), _MAX_DELAY)


class OpenAICompatClient(LLMClient):
    """Posts to ``/v1/chat/completions`` with bearer authentication."""

    def __init__(self, config: LLMConfig) -> None:
        super().__init__(config)
        headers = {"Authorization": f"Bearer {config.api_key}"} if config.api_key else {}
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
            headers=headers,
        )

    async def chat(
        self,
        messages: list[dict],
        *,
        temperature: float = 0.0,
        json_output: bool = False,
    ) -> str:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": self.config.max_tokens,
        }
        if self.config.top_p is not None:
            payload["top_p"] = self.config.top_p
        if json_output:
            payload["response_format"] = {"type": "json_object"}

        resp = await self._post_with_retry("/v1/chat/completions", payload)
        resp.raise_for_status()
        choices = resp.json().get("choices") or []
        if not choices:
            logger.warning("Completion from %s returned no choices", self.name)
            return ""
        return choices[0].get("message", {}).get("content") or ""

    async def is_available(self) -> bool:
        try:
            resp = await self._http.get("/v1/models")
        except httpx.HTTPError:
            return False
        return resp.status_code == 200

    async def close(self) -> None:
        await self._http.aclose()

    async def _post_with_retry(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        """POST, retrying rate limits, 5xx answers and transport errors.

        The final attempt's response or exception is returned to the caller as-is.
        """
        attempts = max(1, self.config.max_retries + 1)
        for attempt in range(1, attempts):
            try:
                resp = await self._http.post(url, json=payload)
            except httpx.TransportError as exc:
                reason, retry_after = str(exc) or type(exc).__name__, None
            else:
                if resp.status_code not in _RETRY_STATUSES:
                    return resp
                reason, retry_after = f"HTTP {resp.status_code}", resp.headers.get("Retry-After")

            delay = _backoff(attempt, retry_after)
            logger.warning(
                "Completion request to %s failed (%s), retry %d/%d in %.1fs",
                self.name, reason, attempt, attempts - 1, delay,
            )
            await asyncio.sleep(delay)

        return await self._http.post(url, json=payload)
