"""Extraction of property records from a cadastral certificate (visura) PDF.

The PDF text is pulled out with pdfplumber and handed to the configured LLM,
which must answer with a JSON object listing every property found.
"""

from __future__ import annotations

import io
import json
import logging
import re
import uuid
from decimal import Decimal

import httpx
import pdfplumber
from pydantic import BaseModel, Field, ValidationError, field_validator

from imucalc.finance.models import Available, Property, normalize_category
from imucalc.llm.client import LLMClient

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """Sei un assistente specializzato nell'estrazione di dati da visure catastali italiane.
Il tuo compito è estrarre TUTTI gli immobili presenti nella visura e per ognuno estrarre i seguenti dati:

- indirizzo dell'immobile
- nome del comune
- provincia (due lettere)
- categoria catastale (es. A/2, C/6, ecc.)
- rendita catastale (solo rendita catastale, in euro)

IMPORTANTE: Devi restituire SOLO un oggetto JSON valido, senza alcun testo di spiegazione, commenti o formattazione Markdown.
Il formato deve essere esattamente:

{
  "immobili": [
    {
      "indirizzo": "...",
      "comune": "...",
      "provincia": "...",
      "categoria": "...",
      "rendita": ...
    }
  ]
}

NON aggiungere alcun testo prima o dopo il JSON. NON usare formattazione Markdown."""

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class VisuraExtractionError(Exception):
    """The visura could not be read or the model answer was unusable."""


class ExtractedProperty(BaseModel):
    """One property as listed in a visura."""

    model_config = {"populate_by_name": True}

    address: str = Field(default="", alias="indirizzo")
    municipality: str = Field(alias="comune")
    province: str = Field(default="", alias="provincia")
    category: str = Field(alias="categoria")
    cadastral_rent: Decimal = Field(alias="rendita", ge=0)

    @field_validator("cadastral_rent", mode="before")
    @classmethod
    def _parse_rent(cls, value: object) -> object:
        # Italian notation: "1.234,56" or "Euro 512,30"
        if isinstance(value, float):
            return str(value)
        if isinstance(value, str):
            cleaned = re.sub(r"[^\d,.\-]", "", value)
            if "," in cleaned:
                cleaned = cleaned.replace(".", "").replace(",", ".")
            return cleaned or value
        return value

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, value: str) -> str:
        return normalize_category(value)

    @field_validator("province")
    @classmethod
    def _normalize_province(cls, value: str) -> str:
        return value.strip().upper()

    def to_property(self, property_id: str | None = None) -> Property:
        """Draft Property with a fresh id; the usage condition starts as available."""
        return Property(
            id=property_id or str(uuid.uuid4()),
            address=self.address,
            municipality=self.municipality,
            province=self.province,
            category=self.category,
            cadastral_rent=self.cadastral_rent,
            condition=Available(),
        )


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """Return the concatenated text of every page."""
    try:
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as exc:
        raise VisuraExtractionError(f"Unreadable PDF: {exc}") from exc

    text = "\n".join(p for p in pages if p)
    if not text.strip():
        raise VisuraExtractionError("No text could be extracted from the PDF")
    return text


def clean_model_answer(answer: str) -> str:
    """Strip code fences and any prose around the outermost JSON object."""
    cleaned = _FENCE_RE.sub("", answer)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end < start:
        return cleaned.strip()
    return cleaned[start:end + 1].strip()


def parse_model_answer(answer: str) -> list[ExtractedProperty]:
    """Parse the ``{"immobili": [...]}`` answer into ExtractedProperty models."""
    try:
        data = json.loads(clean_model_answer(answer))
    except json.JSONDecodeError as exc:
        logger.error("Model answer is not valid JSON: %r", answer[:500])
        raise VisuraExtractionError("Invalid response format from the model") from exc

    items = data.get("immobili") if isinstance(data, dict) else None
    if not isinstance(items, list):
        raise VisuraExtractionError("Model answer has no 'immobili' list")

    try:
        return [ExtractedProperty.model_validate(item) for item in items]
    except ValidationError as exc:
        raise VisuraExtractionError(f"Invalid property in model answer: {exc}") from exc


class VisuraExtractor:
    """Turns a visura PDF into a list of extracted properties via an LLM."""

    def __init__(self, llm_client: LLMClient, max_chars: int = 20_000) -> None:
        self._llm = llm_client
        self._max_chars = max_chars

    async def extract(self, pdf_bytes: bytes) -> list[ExtractedProperty]:
        text = extract_pdf_text(pdf_bytes)
        logger.debug("Visura text (first 500 chars): %s", text[:500])

        try:
            answer = await self._llm.generate(
                f"Ecco il contenuto della visura catastale:\n\n{text[:self._max_chars]}",
                system_prompt=EXTRACTION_PROMPT,
                temperature=0.0,
                json_output=True,
            )
        except httpx.HTTPError as exc:
            raise VisuraExtractionError(f"LLM request failed: {exc}") from exc
        if not answer:
            raise VisuraExtractionError("Empty response from the model")

        properties = parse_model_answer(answer)
        logger.info("Extracted %d properties from visura", len(properties))
        return properties
