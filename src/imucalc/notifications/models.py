"""Email data models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class EmailAttachment(BaseModel):
    filename: str
    content: bytes
    content_type: str = "application/pdf"


class EmailMessage(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    to: str
    subject: str = ""
    html: str = ""
    attachments: list[EmailAttachment] = Field(default_factory=list)
    status: DeliveryStatus = DeliveryStatus.PENDING
    provider_id: str | None = None
    template_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    delivered_at: datetime | None = None


class EmailTemplate(BaseModel):
    id: str
    subject: str
    body: str
