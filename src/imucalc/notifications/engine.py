"""Report mailer: template rendering and delivery of IMU reports."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from imucalc.export.renderer import format_eur
from imucalc.finance.models import InstallmentPlan, TaxAssessment
from imucalc.notifications.models import EmailAttachment, EmailMessage, EmailTemplate
from imucalc.notifications.service import EmailService

logger = logging.getLogger(__name__)

_DEFAULT_TEMPLATES_PATH = Path(__file__).resolve().parents[3] / "config" / "email_templates.yml"

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


def render_template(template_str: str, context: dict[str, Any]) -> str:
    """Single-pass ``{key}`` substitution; unknown placeholders are kept as-is."""
    str_context = {k: str(v) for k, v in context.items()}

    def _replace(m: re.Match) -> str:
        return str_context.get(m.group(1), m.group(0))

    return _PLACEHOLDER_RE.sub(_replace, template_str)


def report_filename(year: int, generated_at: datetime) -> str:
    return f"Report_IMU_{year}_{generated_at.strftime('%d-%m-%Y')}.pdf"


class ReportMailer:
    """Sends IMU reports and test emails using YAML templates."""

    def __init__(
        self,
        service: EmailService,
        templates_path: str | Path | None = None,
    ) -> None:
        self._service = service
        self._templates: dict[str, EmailTemplate] = {}
        self._load_templates(Path(templates_path) if templates_path else _DEFAULT_TEMPLATES_PATH)

    def _load_templates(self, path: Path) -> None:
        if not path.exists():
            logger.warning("Email templates file %s not found", path)
            return
        with open(path) as fh:
            data = yaml.safe_load(fh) or {}
        for tmpl_id, tmpl_data in data.get("templates", {}).items():
            self._templates[tmpl_id] = EmailTemplate(
                id=tmpl_id,
                subject=tmpl_data.get("subject", ""),
                body=tmpl_data.get("body", ""),
            )

    @property
    def templates(self) -> dict[str, EmailTemplate]:
        return dict(self._templates)

    async def send_report(
        self,
        recipient: str,
        pdf_bytes: bytes,
        assessment: TaxAssessment,
        installments: InstallmentPlan,
        generated_at: datetime | None = None,
    ) -> EmailMessage:
        """Email the PDF report with a summary of total and installments."""
        generated_at = generated_at or datetime.now(timezone.utc)
        context = {
            "year": installments.year,
            "date": generated_at.strftime("%d/%m/%Y"),
            "total": format_eur(assessment.total),
            "first": format_eur(installments.first),
            "second": format_eur(installments.second),
            "first_due": f"{installments.first_due_label} {installments.year}",
            "second_due": f"{installments.second_due_label} {installments.year}",
            "properties": len(assessment.properties),
        }
        message = self._from_template("imu_report", recipient, context)
        message.attachments.append(
            EmailAttachment(filename=report_filename(installments.year, generated_at), content=pdf_bytes)
        )
        return await self._service.send(message)

    async def send_test(self, recipient: str) -> EmailMessage:
        """Send a plain message to verify the email configuration."""
        return await self._service.send(self._from_template("test_email", recipient, {}))

    def _from_template(
        self,
        template_id: str,
        recipient: str,
        context: dict[str, Any],
    ) -> EmailMessage:
        template = self._templates.get(template_id)
        if template:
            subject = render_template(template.subject, context)
            html = render_template(template.body, context)
        else:
            subject = template_id.replace("_", " ").title()
            html = f"<p>{subject}</p>"

        return EmailMessage(
            to=recipient,
            subject=subject,
            html=html,
            template_id=template_id,
            metadata=context,
        )
