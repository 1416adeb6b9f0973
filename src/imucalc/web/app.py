"""FastAPI application for the IMU calculator.

Provides REST API endpoints for the IMU calculation, visura extraction,
PDF reports and email delivery, plus health checks.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from imucalc.core.config import Settings
from imucalc.core.types import HealthStatus
from imucalc.export.renderer import ReportRenderer
from imucalc.extraction.visura import VisuraExtractor
from imucalc.finance.calculator import ImuCalculator
from imucalc.finance.imu import ImuEngine
from imucalc.finance.tables import ValuationMultipliers
from imucalc.llm import LLMClient, create_llm_client
from imucalc.llm.health import check_llm_health
from imucalc.notifications.engine import ReportMailer
from imucalc.notifications.service import EmailService, create_email_service
from imucalc.rates.resolver import RateResolver, create_rate_resolver
from imucalc.web.imu_router import router as imu_router

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str = "0.1.0"
    tax_year: int
    llm_configured: bool
    email_provider: str


def _llm_configured(settings: Settings) -> bool:
    # Hosted providers need a key; a local Ollama does not.
    return bool(settings.llm.api_key) or settings.llm.provider.lower() == "ollama"


async def _close(resource: Any) -> None:
    close = getattr(resource, "close", None)
    if close is not None:
        await close()


# --- Application factory ---


def create_app(
    settings: Settings | None = None,
    rate_resolver: RateResolver | None = None,
    llm_client: LLMClient | None = None,
    email_service: EmailService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Uses the factory pattern so tests can create isolated app instances
    with fake resolvers, LLM clients and email services.

    Args:
        settings: Application settings. Defaults to Settings().
        rate_resolver: Optional pre-built rate resolver.
        llm_client: Optional pre-built LLM client for visura extraction.
        email_service: Optional pre-built email delivery service.

    Returns:
        A configured FastAPI instance.
    """
    if settings is None:
        settings = Settings()

    logging.getLogger("imucalc").setLevel(settings.log_level.upper())

    if rate_resolver is None:
        rate_resolver = create_rate_resolver(settings.rates)

    if llm_client is None and _llm_configured(settings):
        llm_client = create_llm_client(settings.llm)
    if llm_client is None:
        logger.warning("No LLM configured: visura extraction is disabled")

    if email_service is None:
        email_service = create_email_service(settings.email)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for resource in (rate_resolver, llm_client, email_service):
            await _close(resource)

    app = FastAPI(
        title="IMU Calculator",
        description="Italian municipal property tax (IMU) calculator",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS for the browser front end
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    engine = ImuEngine(
        multipliers=ValuationMultipliers(fallback=settings.rates.fallback_multiplier),
    )
    calculator = ImuCalculator(
        rate_resolver,
        engine=engine,
        tax_year=settings.tax_year,
        lookup_timeout=settings.rates.timeout_seconds,
    )

    # Store on app state for access in route handlers
    app.state.settings = settings
    app.state.calculator = calculator
    app.state.llm_client = llm_client
    app.state.visura_extractor = VisuraExtractor(llm_client) if llm_client else None
    app.state.report_renderer = ReportRenderer()
    app.state.email_service = email_service
    app.state.report_mailer = ReportMailer(email_service, settings.email.templates_path)

    app.include_router(imu_router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Basic health check endpoint."""
        return HealthResponse(
            status="healthy",
            service="imucalc",
            tax_year=settings.tax_year,
            llm_configured=llm_client is not None,
            email_provider=settings.email.provider,
        )

    @app.get("/api/health/llm", response_model=HealthStatus)
    async def llm_health() -> HealthStatus:
        """Probe the LLM backend used for visura extraction."""
        if llm_client is None:
            return HealthStatus(
                service=f"llm:{settings.llm.provider}",
                healthy=False,
                details={"error": "LLM configuration missing"},
            )
        return await check_llm_health(llm_client)

    return app
