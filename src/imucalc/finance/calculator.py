"""Request-level IMU calculation: rate resolution, engine, installments."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, Field

from imucalc.finance.imu import ImuEngine, validate_batch
from imucalc.finance.installments import split_installments
from imucalc.finance.models import (
    ImuValidationError,
    InstallmentPlan,
    MunicipalityKey,
    Property,
    RateTable,
    TaxAssessment,
)
from imucalc.rates.resolver import RateResolver, resolve_or_default, resolve_rate_tables

logger = logging.getLogger(__name__)

# IMU replaced ICI from 2012; installment dates need a four-digit year.
FIRST_TAX_YEAR = 2012
LAST_TAX_YEAR = 9999


class CalculationOutcome(BaseModel):
    """Everything produced for one calculation request."""

    year: int
    assessment: TaxAssessment
    installments: InstallmentPlan
    rate_tables: dict[str, RateTable] = Field(default_factory=dict)


class ImuCalculator:
    """Resolves rate tables for a batch and runs the IMU engine over it."""

    def __init__(
        self,
        resolver: RateResolver,
        engine: ImuEngine | None = None,
        tax_year: int = 2025,
        lookup_timeout: float | None = None,
    ) -> None:
        self._resolver = resolver
        self._engine = engine or ImuEngine()
        self._tax_year = tax_year
        self._lookup_timeout = lookup_timeout

    @property
    def tax_year(self) -> int:
        return self._tax_year

    @property
    def resolver(self) -> RateResolver:
        return self._resolver

    async def rate_table_for(
        self,
        province: str,
        municipality: str,
        year: int | None = None,
    ) -> RateTable:
        """Rate table applied to one municipality, the default table if unresolved."""
        return await resolve_or_default(
            self._resolver, province, municipality, year or self._tax_year,
            timeout=self._lookup_timeout,
        )

    async def calculate(
        self,
        properties: Sequence[Property],
        year: int | None = None,
    ) -> CalculationOutcome:
        # Reject invalid batches before any lookup.
        validate_batch(properties)
        year = year or self._tax_year
        if not FIRST_TAX_YEAR <= year <= LAST_TAX_YEAR:
            raise ImuValidationError(
                f"Tax year {year} is out of range ({FIRST_TAX_YEAR}-{LAST_TAX_YEAR})"
            )

        tables = await resolve_rate_tables(
            properties, self._resolver, year, timeout=self._lookup_timeout
        )
        assessment = self._engine.compute(properties, tables)
        logger.info(
            "Computed IMU %s for %d properties in %d municipalities: total %s",
            year, len(properties), len(tables), assessment.total,
        )
        return CalculationOutcome(
            year=year,
            assessment=assessment,
            installments=split_installments(assessment.total, year),
            rate_tables={_key_label(k): t for k, t in tables.items()},
        )


def _key_label(key: MunicipalityKey) -> str:
    return f"{key.province}|{key.municipality}"
