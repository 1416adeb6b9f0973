"""Static IMU data: cadastral valuation multipliers and the default rate table."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal
from types import MappingProxyType

from imucalc.finance.models import ContractKind, RateTable, normalize_category

logger = logging.getLogger(__name__)


DEFAULT_FALLBACK_MULTIPLIER = 126

# Multipliers per cadastral category (2024 values)
VALUATION_MULTIPLIERS: Mapping[str, int] = MappingProxyType({
    "A/1": 176, "A/2": 140, "A/3": 126, "A/4": 110, "A/5": 140, "A/6": 126,
    "A/7": 110, "A/8": 140, "A/9": 140, "A/10": 126, "A/11": 126,
    "B/1": 176, "B/2": 176, "B/3": 176, "B/4": 176,
    "B/5": 176, "B/6": 176, "B/7": 176, "B/8": 176,
    "C/1": 55, "C/2": 34, "C/3": 34, "C/4": 34, "C/5": 34, "C/6": 55, "C/7": 34,
    "D/1": 65, "D/2": 80, "D/3": 80, "D/4": 65, "D/5": 80,
    "D/6": 65, "D/7": 65, "D/8": 140, "D/9": 80, "D/10": 80,
    "E/1": 65, "E/2": 140, "E/3": 140, "E/4": 140, "E/5": 140,
    "E/6": 140, "E/7": 140, "E/8": 140, "E/9": 80,
})


DEFAULT_RATE_TABLE = RateTable(
    default_rate=Decimal("0.86"),
    primary_residence_rate=Decimal("0.4"),
    primary_residence_luxury_rate=Decimal("0.6"),
    rented_rates={
        ContractKind.MARKET: Decimal("1.06"),
        ContractKind.AGREED: Decimal("0.575"),
        ContractKind.TRANSITIONAL: Decimal("0.575"),
        ContractKind.STUDENT: Decimal("0.575"),
        ContractKind.FAMILY_USE: Decimal("1.06"),
    },
    primary_residence_deduction=Decimal("200"),
    source="default",
)


class ValuationMultipliers:
    """Read-only category -> multiplier lookup with an explicit fallback."""

    def __init__(
        self,
        table: Mapping[str, int] | None = None,
        fallback: int = DEFAULT_FALLBACK_MULTIPLIER,
    ) -> None:
        source = VALUATION_MULTIPLIERS if table is None else table
        self._table: Mapping[str, int] = MappingProxyType(
            {normalize_category(k): int(v) for k, v in source.items()}
        )
        self._fallback = fallback

    @property
    def fallback(self) -> int:
        return self._fallback

    def __contains__(self, category: object) -> bool:
        return isinstance(category, str) and normalize_category(category) in self._table

    def for_category(self, category: str) -> int:
        multiplier = self._table.get(normalize_category(category))
        if multiplier is None:
            logger.warning(
                "Unknown cadastral category %r, using fallback multiplier %d",
                category, self._fallback,
            )
            return self._fallback
        return multiplier
