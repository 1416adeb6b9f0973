"""Deterministic IMU computation engine: no I/O, no LLM calls."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal

from imucalc.finance.models import (
    Appurtenance,
    ContractKind,
    ImuValidationError,
    MunicipalityKey,
    PrimaryResidence,
    Property,
    PropertyTaxResult,
    RateTable,
    Rented,
    TaxAssessment,
    round_currency,
)
from imucalc.finance.tables import DEFAULT_RATE_TABLE, ValuationMultipliers


LUXURY_CATEGORIES = frozenset({"A/1", "A/8", "A/9"})
APPURTENANCE_CATEGORIES = frozenset({"C/2", "C/6", "C/7"})

REVALUATION_FACTOR = Decimal("1.05")
FAMILY_USE_RELIEF = Decimal("0.5")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def validate_batch(properties: Sequence[Property]) -> None:
    """Reject an empty batch, blank required fields and duplicate identifiers."""
    if not properties:
        raise ImuValidationError("No properties provided for the computation")

    seen: set[str] = set()
    for index, prop in enumerate(properties):
        label = prop.id or f"#{index + 1}"
        if not prop.id.strip():
            raise ImuValidationError(f"Property #{index + 1} has no identifier")
        for field in ("category", "municipality", "province"):
            if not getattr(prop, field).strip():
                raise ImuValidationError(f"Property {label!r} is missing {field!r}")
        if prop.id in seen:
            raise ImuValidationError(f"Duplicate property identifier {prop.id!r}")
        seen.add(prop.id)


def qualifying_appurtenances(properties: Sequence[Property]) -> set[str]:
    """Return the ids of appurtenances taxed like their primary residence.

    At most one appurtenance per (residence, category) qualifies: the one
    with the strictly highest cadastral rent, the first in input order on ties.
    """
    by_id = {p.id: p for p in properties}
    best: dict[tuple[str, str], Property] = {}

    for prop in properties:
        condition = prop.condition
        if not isinstance(condition, Appurtenance):
            continue
        residence = by_id.get(condition.of)
        if residence is None or not isinstance(residence.condition, PrimaryResidence):
            continue
        if prop.category not in APPURTENANCE_CATEGORIES:
            continue

        key = (condition.of, prop.category)
        current = best.get(key)
        if current is None or prop.cadastral_rent > current.cadastral_rent:
            best[key] = prop

    return {p.id for p in best.values()}


class ImuEngine:
    """Computes IMU for a batch of properties against resolved rate tables."""

    def __init__(
        self,
        multipliers: ValuationMultipliers | None = None,
        default_table: RateTable = DEFAULT_RATE_TABLE,
    ) -> None:
        self._multipliers = multipliers or ValuationMultipliers()
        self._default_table = default_table

    @property
    def multipliers(self) -> ValuationMultipliers:
        return self._multipliers

    def compute(
        self,
        properties: Sequence[Property],
        rate_tables: Mapping[MunicipalityKey, RateTable],
    ) -> TaxAssessment:
        validate_batch(properties)

        by_id = {p.id: p for p in properties}
        qualifying = qualifying_appurtenances(properties)

        results = [
            self._compute_one(prop, by_id, qualifying, rate_tables)
            for prop in properties
        ]
        total = round_currency(sum((r.tax_due for r in results), _ZERO))
        return TaxAssessment(total=total, properties=results)

    # -- internal ------------------------------------------------------------

    def _table_for(
        self,
        prop: Property,
        rate_tables: Mapping[MunicipalityKey, RateTable],
    ) -> RateTable:
        return rate_tables.get(MunicipalityKey.for_property(prop), self._default_table)

    @staticmethod
    def _residence_rate(prop: Property, table: RateTable) -> Decimal:
        if prop.category in LUXURY_CATEGORIES:
            return table.primary_residence_luxury_rate
        return table.primary_residence_rate

    def _compute_one(
        self,
        prop: Property,
        by_id: Mapping[str, Property],
        qualifying: set[str],
        rate_tables: Mapping[MunicipalityKey, RateTable],
    ) -> PropertyTaxResult:
        table = self._table_for(prop, rate_tables)
        multiplier = self._multipliers.for_category(prop.category)
        base = prop.cadastral_rent * REVALUATION_FACTOR * multiplier
        deduction = _ZERO
        primary = False
        condition = prop.condition

        if isinstance(condition, PrimaryResidence):
            rate = self._residence_rate(prop, table)
            if prop.category not in LUXURY_CATEGORIES:
                deduction = table.primary_residence_deduction
            primary = True
        elif isinstance(condition, Appurtenance) and prop.id in qualifying:
            residence = by_id[condition.of]
            rate = self._residence_rate(residence, self._table_for(residence, rate_tables))
            primary = True
        elif isinstance(condition, Rented):
            rate = table.rented_rate(condition.contract)
            if condition.contract is ContractKind.FAMILY_USE:
                base = base * FAMILY_USE_RELIEF
        else:
            rate = table.default_rate

        tax = base * rate / _HUNDRED
        due = max(_ZERO, tax - deduction)

        return PropertyTaxResult(
            id=prop.id,
            rate=rate,
            multiplier=multiplier,
            taxable_base=round_currency(base),
            deduction=round_currency(deduction),
            tax_due=round_currency(due),
            primary_residence=primary,
        )
