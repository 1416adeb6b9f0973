"""Email delivery service Protocol, mock and Resend implementations."""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

import httpx

from imucalc.core.config import EmailConfig
from imucalc.notifications.models import DeliveryStatus, EmailMessage
from imucalc.notifications.store import EmailStore

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """The email provider rejected the message or could not be reached."""


@runtime_checkable
class EmailService(Protocol):
    """Protocol for email delivery services."""

    async def send(self, message: EmailMessage) -> EmailMessage: ...


class MockEmailService:
    """Mock service that immediately delivers every message to an in-memory store."""

    def __init__(self, store: EmailStore | None = None) -> None:
        self._store = store or EmailStore()

    @property
    def store(self) -> EmailStore:
        return self._store

    async def send(self, message: EmailMessage) -> EmailMessage:
        message.status = DeliveryStatus.DELIVERED
        message.delivered_at = datetime.now(timezone.utc)
        self._store.save(message)
        return message


class ResendEmailService:
    """Sends messages through the Resend REST API."""

    def __init__(self, config: EmailConfig, store: EmailStore | None = None) -> None:
        if not config.api_key:
            raise ValueError("Resend email service requires an api_key")
        self._config = config
        self._store = store or EmailStore()
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
            headers={"Authorization": f"Bearer {config.api_key}"},
        )

    @property
    def store(self) -> EmailStore:
        return self._store

    async def send(self, message: EmailMessage) -> EmailMessage:
        payload = {
            "from": self._config.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.attachments:
            payload["attachments"] = [
                {
                    "filename": a.filename,
                    "content": base64.b64encode(a.content).decode("ascii"),
                }
                for a in message.attachments
            ]

        try:
            resp = await self._http.post("/emails", json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            message.status = DeliveryStatus.FAILED
            self._store.save(message)
            logger.error("Email %s to %s failed: %s", message.id, message.to, exc)
            raise EmailDeliveryError(f"Email delivery failed: {exc}") from exc

        message.status = DeliveryStatus.DELIVERED
        message.delivered_at = datetime.now(timezone.utc)
        message.provider_id = resp.json().get("id")
        self._store.save(message)
        logger.info("Email %s delivered to %s (provider id %s)", message.id, message.to, message.provider_id)
        return message

    async def close(self) -> None:
        await self._http.aclose()


def create_email_service(config: EmailConfig, store: EmailStore | None = None) -> EmailService:
    """Factory: select an email service based on config.provider."""
    provider = config.provider.lower()
    if provider == "resend":
        return ResendEmailService(config, store=store)
    if provider == "mock":
        return MockEmailService(store=store)
    raise ValueError(f"Unknown email provider {config.provider!r}. Available: mock, resend")
