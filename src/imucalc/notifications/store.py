"""Delivery log of report and test emails, kept for the process lifetime."""

from __future__ import annotations

from imucalc.notifications.models import DeliveryStatus, EmailMessage


class EmailStore:
    """Keeps the last state of every message handed to an email service.

    Saving a message again replaces the earlier entry, so a retried send
    shows only its final status.
    """

    def __init__(self) -> None:
        self._by_id: dict[str, EmailMessage] = {}

    def save(self, message: EmailMessage) -> EmailMessage:
        self._by_id[message.id] = message
        return message

    def get(self, message_id: str) -> EmailMessage | None:
        return self._by_id.get(message_id)

    def find_by_provider_id(self, provider_id: str) -> EmailMessage | None:
        return next((m for m in self._by_id.values() if m.provider_id == provider_id), None)

    def sent_to(self, recipient: str) -> list[EmailMessage]:
        """Messages for ``recipient``, newest first; addresses compare case-insensitively."""
        wanted = recipient.strip().lower()
        matches = [m for m in self._by_id.values() if m.to.lower() == wanted]
        return sorted(matches, key=lambda m: m.created_at, reverse=True)

    def with_status(self, status: DeliveryStatus) -> list[EmailMessage]:
        return [m for m in self._by_id.values() if m.status == status]

    @property
    def count(self) -> int:
        return len(self._by_id)
