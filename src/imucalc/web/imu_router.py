"""IMU API router: calculation, visura extraction, reports and email."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from imucalc.extraction.visura import VisuraExtractionError
from imucalc.finance.calculator import CalculationOutcome
from imucalc.finance.models import ImuValidationError
from imucalc.finance.records import parse_properties
from imucalc.notifications.service import EmailDeliveryError

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Request models ---


class CalcRequest(BaseModel):
    immobili: list[dict[str, Any]] = Field(default_factory=list)
    anno: int | None = None


class ReportRequest(BaseModel):
    email: str | None = None
    immobili: list[dict[str, Any]] = Field(default_factory=list)
    anno: int | None = None


class EmailCheckRequest(BaseModel):
    email: str


# ---------------------------------------------------------------------------
# Helpers to get services from app state
# ---------------------------------------------------------------------------


def _get_calculator(request: Request):
    calculator = getattr(request.app.state, "calculator", None)
    if calculator is None:
        raise HTTPException(status_code=503, detail="IMU calculator not available")
    return calculator


def _get_extractor(request: Request):
    extractor = getattr(request.app.state, "visura_extractor", None)
    if extractor is None:
        raise HTTPException(status_code=503, detail="LLM configuration missing")
    return extractor


def _get_mailer(request: Request):
    mailer = getattr(request.app.state, "report_mailer", None)
    if mailer is None:
        raise HTTPException(status_code=503, detail="Email service not available")
    return mailer


def _check_email(address: str | None) -> str:
    if not address or "@" not in address:
        raise HTTPException(status_code=400, detail="A valid email address is required")
    return address.strip()


# Amounts leave the API as JSON numbers.
def _serialize_outcome(outcome: CalculationOutcome) -> dict[str, Any]:
    plan = outcome.installments
    return {
        "anno": outcome.year,
        "risultato": {
            "imu_totale": float(outcome.assessment.total),
            "dettaglio_per_immobile": [
                {
                    "id": r.id,
                    "aliquota_utilizzata": float(r.rate),
                    "moltiplicatore": r.multiplier,
                    "base_imponibile": float(r.taxable_base),
                    "detrazione_applicata": float(r.deduction),
                    "imu_calcolata": float(r.tax_due),
                    "prima_casa": r.primary_residence,
                }
                for r in outcome.assessment.properties
            ],
        },
        "rate": {
            "prima_rata": float(plan.first),
            "seconda_rata": float(plan.second),
            "scadenze": {
                "prima": plan.first_due_label,
                "seconda": plan.second_due_label,
                "prima_data": plan.first_due.isoformat(),
                "seconda_data": plan.second_due.isoformat(),
            },
        },
    }


async def _calculate(request: Request, records: list[dict[str, Any]], year: int | None):
    calculator = _get_calculator(request)
    properties = parse_properties(records)
    outcome = await calculator.calculate(properties, year)
    return properties, outcome


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/api/calc-imu")
async def api_calc_imu(body: CalcRequest, request: Request) -> Any:
    """Compute IMU for every submitted property."""
    try:
        _, outcome = await _calculate(request, body.immobili, body.anno)
    except ImuValidationError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})

    return {"success": True, **_serialize_outcome(outcome)}


@router.post("/api/extract-visura")
async def api_extract_visura(
    request: Request,
    pdf: UploadFile | None = File(default=None),
) -> dict[str, Any]:
    """Extract the property list from an uploaded visura PDF."""
    if pdf is None:
        raise HTTPException(status_code=400, detail="No PDF file provided")
    if pdf.content_type != "application/pdf":
        raise HTTPException(status_code=400, detail="The file must be a PDF")

    extractor = _get_extractor(request)
    content = await pdf.read()
    logger.info("Visura upload %r (%d bytes)", pdf.filename, len(content))

    try:
        extracted = await extractor.extract(content)
    except VisuraExtractionError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"immobili": [p.model_dump(mode="json", by_alias=True) for p in extracted]}


@router.post("/api/report/pdf")
async def api_report_pdf(body: ReportRequest, request: Request) -> Response:
    """Compute and return the PDF report directly."""
    renderer = request.app.state.report_renderer
    try:
        properties, outcome = await _calculate(request, body.immobili, body.anno)
    except ImuValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    pdf_bytes = renderer.render_assessment_pdf(properties, outcome.assessment, outcome.installments)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="Report_IMU_{outcome.year}.pdf"'},
    )


@router.post("/api/generate-report")
async def api_generate_report(body: ReportRequest, request: Request) -> dict[str, Any]:
    """Compute, render and email the PDF report."""
    recipient = _check_email(body.email)
    mailer = _get_mailer(request)
    renderer = request.app.state.report_renderer

    try:
        properties, outcome = await _calculate(request, body.immobili, body.anno)
    except ImuValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    generated_at = datetime.now(timezone.utc)
    pdf_bytes = renderer.render_assessment_pdf(
        properties, outcome.assessment, outcome.installments, generated_at
    )
    try:
        message = await mailer.send_report(
            recipient, pdf_bytes, outcome.assessment, outcome.installments, generated_at
        )
    except EmailDeliveryError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "success": True,
        "message": "Report inviato con successo",
        "email_id": message.id,
        "imu_totale": float(outcome.assessment.total),
    }


@router.post("/api/test-email")
async def api_test_email(body: EmailCheckRequest, request: Request) -> dict[str, Any]:
    """Send a test email to verify the delivery configuration."""
    recipient = _check_email(body.email)
    mailer = _get_mailer(request)
    try:
        message = await mailer.send_test(recipient)
    except EmailDeliveryError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"success": True, "message": "Email di test inviata", "email_id": message.id}


@router.get("/api/rates/{province}/{municipality}")
async def api_get_rates(
    province: str,
    municipality: str,
    request: Request,
    anno: int | None = None,
) -> dict[str, Any]:
    """Return the rate table applied to a municipality (default table if unknown)."""
    calculator = _get_calculator(request)
    table = await calculator.rate_table_for(province, municipality, anno)
    return table.model_dump(mode="json")
