"""Health probe for the LLM backend behind visura extraction."""

from __future__ import annotations

import logging
import time

import httpx

from imucalc.core.types import HealthStatus
from imucalc.llm.client import LLMClient

logger = logging.getLogger(__name__)


async def check_llm_health(client: LLMClient) -> HealthStatus:
    """Time a reachability probe of ``client``."""
    service = f"llm:{client.config.provider}"
    details = {"base_url": client.config.base_url, "model": client.config.model}
    start = time.perf_counter()
    try:
        available = await client.is_available()
    except httpx.HTTPError as exc:
        logger.warning("LLM health probe for %s failed: %s", client.name, exc)
        return HealthStatus(service=service, healthy=False, details={**details, "error": str(exc)})

    return HealthStatus(
        service=service,
        healthy=available,
        latency_ms=round((time.perf_counter() - start) * 1000, 2),
        details=details,
    )
