"""IMU data models: properties, usage conditions, rate tables and results."""

from __future__ import annotations

import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum
from typing import Annotated, Literal, NamedTuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


_CENT = Decimal("0.01")
_CATEGORY_RE = re.compile(r"^([A-Z])\s*/?\s*0*(\d+)$")


class ImuValidationError(ValueError):
    """Raised when a batch of properties cannot be computed.

    The whole batch is rejected; no partial results are produced.
    """


def round_currency(value: Decimal) -> Decimal:
    """Round a currency amount to cents, half-up."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def normalize_category(category: str | None) -> str:
    """Normalize a cadastral category code, e.g. ``' a2 '`` -> ``'A/2'``.

    Codes that do not look like ``<letter>/<number>`` are returned
    stripped and upper-cased.
    """
    if not category:
        return ""
    raw = category.strip().upper().replace(" ", "")
    match = _CATEGORY_RE.match(raw)
    if match is None:
        return raw
    return f"{match.group(1)}/{match.group(2)}"


class ContractKind(StrEnum):
    """Kind of lease contract for a rented property."""

    MARKET = "market"
    AGREED = "agreed"
    TRANSITIONAL = "transitional"
    STUDENT = "student"
    FAMILY_USE = "family_use"


# ---------------------------------------------------------------------------
# Usage condition (tagged union on ``kind``)
# ---------------------------------------------------------------------------


class Available(BaseModel):
    """Property at the owner's disposal: neither residence nor rented."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["available"] = "available"


class PrimaryResidence(BaseModel):
    """The owner's main dwelling."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["primary_residence"] = "primary_residence"


class Appurtenance(BaseModel):
    """Ancillary unit attached to the primary residence identified by ``of``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["appurtenance"] = "appurtenance"
    of: str


class Rented(BaseModel):
    """Property let under a contract of the given kind."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["rented"] = "rented"
    contract: ContractKind


UsageCondition = Annotated[
    Union[Available, PrimaryResidence, Appurtenance, Rented],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Property and municipality key
# ---------------------------------------------------------------------------


class Property(BaseModel):
    """A single cadastral unit submitted for computation."""

    model_config = ConfigDict(frozen=True)

    id: str
    address: str = ""
    municipality: str
    province: str
    category: str
    cadastral_rent: Decimal = Field(ge=0)
    condition: UsageCondition = Field(default_factory=Available)

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, value: str) -> str:
        return normalize_category(value)


class MunicipalityKey(NamedTuple):
    """Grouping key for rate resolution: (province, municipality)."""

    province: str
    municipality: str

    @classmethod
    def of(cls, province: str, municipality: str) -> MunicipalityKey:
        return cls(province.strip().upper(), " ".join(municipality.split()).casefold())

    @classmethod
    def for_property(cls, prop: Property) -> MunicipalityKey:
        return cls.of(prop.province, prop.municipality)


# ---------------------------------------------------------------------------
# Rate table
# ---------------------------------------------------------------------------


class RateTable(BaseModel):
    """Percentage rates and deduction for one municipality and year."""

    model_config = ConfigDict(frozen=True)

    default_rate: Decimal
    primary_residence_rate: Decimal
    primary_residence_luxury_rate: Decimal
    rented_rates: dict[ContractKind, Decimal] = Field(default_factory=dict)
    primary_residence_deduction: Decimal = Decimal("200")
    source: str = "default"

    def rented_rate(self, contract: ContractKind) -> Decimal:
        """Rate for a rented property; the default rate if the kind is not listed."""
        return self.rented_rates.get(contract, self.default_rate)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class PropertyTaxResult(BaseModel):
    """Computed tax for one property."""

    id: str
    rate: Decimal
    multiplier: int
    taxable_base: Decimal
    deduction: Decimal
    tax_due: Decimal
    primary_residence: bool = False


class TaxAssessment(BaseModel):
    """Aggregate result for a batch, breakdown in input order."""

    total: Decimal
    properties: list[PropertyTaxResult] = Field(default_factory=list)

    def result_for(self, property_id: str) -> PropertyTaxResult | None:
        for result in self.properties:
            if result.id == property_id:
                return result
        return None


class InstallmentPlan(BaseModel):
    """Two statutory installments for a yearly IMU total."""

    year: int
    total: Decimal
    first: Decimal
    second: Decimal
    first_due: date
    second_due: date
    first_due_label: str = "16 giugno"
    second_due_label: str = "16 dicembre"
