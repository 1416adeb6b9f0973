"""Application configuration loaded from environment and config files."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class LLMConfig(BaseSettings):
    """LLM provider configuration used for visura extraction."""

    model_config = {"env_prefix": "IMU_LLM_"}

    provider: str = "openai"
    base_url: str = "https://api.openai.com"
    model: str = "gpt-4"
    api_key: str | None = None
    timeout_seconds: int = 60
    max_retries: int = 1
    max_tokens: int = 500
    top_p: float | None = None


class RatesConfig(BaseSettings):
    """Rate table lookup configuration."""

    model_config = {"env_prefix": "IMU_RATES_"}

    provider: str = "static"
    tables_path: str | None = None
    supabase_url: str | None = None
    supabase_key: str | None = None
    table: str = "aliquote_imu"
    timeout_seconds: float = 10.0
    fallback_multiplier: int = 126


class EmailConfig(BaseSettings):
    """Transactional email configuration."""

    model_config = {"env_prefix": "IMU_EMAIL_"}

    provider: str = "mock"
    base_url: str = "https://api.resend.com"
    api_key: str | None = None
    sender: str = "IMU Calculator <onboarding@resend.dev>"
    templates_path: str | None = None
    timeout_seconds: int = 30


class Settings(BaseSettings):
    """Root application settings."""

    model_config = {"env_prefix": "IMU_"}

    log_level: str = "INFO"
    tax_year: int = 2025

    llm: LLMConfig = Field(default_factory=LLMConfig)
    rates: RatesConfig = Field(default_factory=RatesConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
