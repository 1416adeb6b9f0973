"""IMU report renderer for JSON and PDF export."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime, timezone
from decimal import Decimal

from fpdf import FPDF

from imucalc.finance.models import (
    Appurtenance,
    ContractKind,
    InstallmentPlan,
    PrimaryResidence,
    Property,
    Rented,
    TaxAssessment,
)


_PRIMARY_COLOR = (59, 130, 246)
_SECONDARY_COLOR = (107, 114, 128)
_HIGHLIGHT_COLOR = (220, 38, 127)

_CONTRACT_LABELS = {
    ContractKind.MARKET: "Locazione libera",
    ContractKind.AGREED: "Locazione concordata",
    ContractKind.TRANSITIONAL: "Locazione transitoria",
    ContractKind.STUDENT: "Locazione studenti",
    ContractKind.FAMILY_USE: "Comodato a parenti",
}


def describe_condition(prop: Property) -> str:
    """Italian label for a property's usage condition."""
    condition = prop.condition
    if isinstance(condition, PrimaryResidence):
        return "Abitazione principale"
    if isinstance(condition, Appurtenance):
        return f"Pertinenza di {condition.of}"
    if isinstance(condition, Rented):
        return _CONTRACT_LABELS[condition.contract]
    return "A disposizione"


def _latin1(text: str) -> str:
    # Core PDF fonts only cover latin-1.
    return text.encode("latin-1", "replace").decode("latin-1")


def format_eur(amount: Decimal) -> str:
    """Format an amount the Italian way: ``EUR 1.234,56``."""
    text = f"{amount:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"EUR {text}"


class _ReportPDF(FPDF):
    footer_text = ""

    def footer(self) -> None:
        self.set_y(-15)
        self.set_font("Helvetica", "I", 8)
        self.set_text_color(*_SECONDARY_COLOR)
        self.cell(0, 10, self.footer_text, align="L")
        self.set_x(self.l_margin)
        self.cell(0, 10, f"Pagina {self.page_no()} di {{nb}}", align="R")


class ReportRenderer:
    """Renders IMU assessments as PDF reports."""

    def __init__(self, app_name: str = "IMU Calculator") -> None:
        self._app_name = app_name

    def render_json(
        self,
        properties: Sequence[Property],
        assessment: TaxAssessment,
        installments: InstallmentPlan,
    ) -> str:
        payload = {
            "year": installments.year,
            "properties": [p.model_dump(mode="json") for p in properties],
            "assessment": assessment.model_dump(mode="json"),
            "installments": installments.model_dump(mode="json"),
        }
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def render_assessment_pdf(
        self,
        properties: Sequence[Property],
        assessment: TaxAssessment,
        installments: InstallmentPlan,
        generated_at: datetime | None = None,
    ) -> bytes:
        """Render the full IMU report: totals, installments, per-property detail."""
        generated_at = generated_at or datetime.now(timezone.utc)
        year = installments.year

        pdf = _ReportPDF()
        pdf.footer_text = f"Generato da {self._app_name} - Sistema di calcolo imposte immobiliari"
        pdf.set_auto_page_break(auto=True, margin=20)
        pdf.add_page()

        # Header
        pdf.set_font("Helvetica", "B", 20)
        pdf.set_text_color(*_PRIMARY_COLOR)
        pdf.cell(0, 12, f"Report Calcolo IMU {year}", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", "", 10)
        pdf.set_text_color(*_SECONDARY_COLOR)
        pdf.cell(
            0, 8,
            f"Generato il {generated_at.strftime('%d/%m/%Y')} alle {generated_at.strftime('%H:%M')}",
            new_x="LMARGIN", new_y="NEXT",
        )
        pdf.ln(6)

        # Summary
        pdf.set_font("Helvetica", "B", 14)
        pdf.set_text_color(0, 0, 0)
        pdf.cell(0, 10, "Riepilogo totale", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", "B", 12)
        pdf.set_text_color(*_PRIMARY_COLOR)
        pdf.cell(
            0, 8, f"IMU totale {year}: {format_eur(assessment.total)}",
            new_x="LMARGIN", new_y="NEXT",
        )
        pdf.set_font("Helvetica", "", 10)
        pdf.set_text_color(*_SECONDARY_COLOR)
        pdf.cell(
            0, 7,
            f"  Prima rata (scadenza {installments.first_due.strftime('%d/%m/%Y')}): "
            f"{format_eur(installments.first)}",
            new_x="LMARGIN", new_y="NEXT",
        )
        pdf.cell(
            0, 7,
            f"  Seconda rata (scadenza {installments.second_due.strftime('%d/%m/%Y')}): "
            f"{format_eur(installments.second)}",
            new_x="LMARGIN", new_y="NEXT",
        )
        pdf.ln(6)

        # Per-property detail
        pdf.set_font("Helvetica", "B", 14)
        pdf.set_text_color(0, 0, 0)
        pdf.cell(0, 10, "Dettaglio per immobile", new_x="LMARGIN", new_y="NEXT")

        for index, prop in enumerate(properties, start=1):
            result = assessment.result_for(prop.id)

            pdf.set_font("Helvetica", "B", 11)
            pdf.set_text_color(*_PRIMARY_COLOR)
            pdf.cell(0, 8, f"Immobile {index}", new_x="LMARGIN", new_y="NEXT")

            pdf.set_font("Helvetica", "", 10)
            pdf.set_text_color(0, 0, 0)
            lines = [
                f"Indirizzo: {prop.address or '-'}",
                f"Comune: {prop.municipality} ({prop.province})",
                f"Categoria: {prop.category}",
                f"Rendita catastale: {format_eur(prop.cadastral_rent)}",
                f"Configurazione: {describe_condition(prop)}",
            ]
            for line in lines:
                pdf.cell(0, 6, _latin1(f"  {line}"), new_x="LMARGIN", new_y="NEXT")

            if result is not None:
                pdf.set_text_color(*_PRIMARY_COLOR)
                pdf.cell(0, 6, f"  Aliquota applicata: {result.rate}%", new_x="LMARGIN", new_y="NEXT")
                pdf.cell(
                    0, 6, f"  Base imponibile: {format_eur(result.taxable_base)}",
                    new_x="LMARGIN", new_y="NEXT",
                )
                if result.deduction:
                    pdf.cell(
                        0, 6, f"  Detrazione: {format_eur(result.deduction)}",
                        new_x="LMARGIN", new_y="NEXT",
                    )
                pdf.set_font("Helvetica", "B", 10)
                pdf.set_text_color(*_HIGHLIGHT_COLOR)
                pdf.cell(
                    0, 7, f"  IMU calcolata: {format_eur(result.tax_due)}",
                    new_x="LMARGIN", new_y="NEXT",
                )
            pdf.ln(4)

        return bytes(pdf.output())
