"""Ollama provider for running the visura extraction on a local model."""

from __future__ import annotations

import asyncio
import logging

import httpx

from imucalc.core.config import LLMConfig
from imucalc.llm.client import LLMClient

logger = logging.getLogger(__name__)

_CONTEXT_WINDOW = 8192


class OllamaClient(LLMClient):
    """Talks to a local Ollama instance through ``/api/chat``."""

    def __init__(self, config: LLMConfig) -> None:
        super().__init__(config)
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    async def chat(
        self,
        messages: list[dict],
        *,
        temperature: float = 0.0,
        json_output: bool = False,
    ) -> str:
        options: dict = {
            "temperature": temperature,
            "num_ctx": _CONTEXT_WINDOW,
            "num_predict": self.config.max_tokens,
        }
        if self.config.top_p is not None:
            options["top_p"] = self.config.top_p
        payload: dict = {
            "model": self.config.model,
            "messages": messages,
            "stream": False,
            "options": options,
        }
        if json_output:
            payload["format"] = "json"

        data = await self._post("/api/chat", payload)
        return data.get("message", {}).get("content") or ""

    async def is_available(self) -> bool:
        try:
            resp = await self._http.get("/api/tags")
        except httpx.HTTPError:
            return False
        return resp.status_code == 200

    async def close(self) -> None:
        await self._http.aclose()

    async def _post(self, path: str, payload: dict) -> dict:
        # A local server that is still loading the model answers 5xx or drops the connection.
        retries = self.config.max_retries
        for attempt in range(retries + 1):
            try:
                resp = await self._http.post(path, json=payload)
                if resp.status_code < 500 or attempt == retries:
                    resp.raise_for_status()
                    return resp.json()
                logger.warning("Ollama answered %d, retrying", resp.status_code)
            except httpx.TransportError:
                if attempt == retries:
                    raise
                logger.warning("Ollama unreachable at %s, retrying", self.config.base_url)
            await asyncio.sleep(0.5 * 2 ** attempt)
        raise RuntimeError("unreachable")  # pragma: no cover
