"""Rate table resolvers and the per-municipality lookup fan-out.

A resolver maps (province, municipality, year) to a RateTable. Lookups are
grouped so each distinct municipality in a batch hits the resolver exactly
once. Any lookup failure degrades to the default table; it is never an error
for the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import httpx
import yaml

from imucalc.core.config import RatesConfig
from imucalc.finance.models import ContractKind, MunicipalityKey, Property, RateTable
from imucalc.finance.tables import DEFAULT_RATE_TABLE

logger = logging.getLogger(__name__)


_DEFAULT_TABLES_PATH = Path(__file__).resolve().parents[3] / "config" / "rate_tables.yml"


class RateTableNotFound(LookupError):
    """No rate table is recorded for the requested municipality."""


@runtime_checkable
class RateResolver(Protocol):
    """Protocol for rate table lookup backends."""

    async def resolve(
        self,
        province: str,
        municipality: str,
        year: int | None = None,
    ) -> RateTable: ...


def _to_rate(value: Any, fallback: Decimal) -> Decimal:
    """Coerce a stored percentage; missing, zero or garbage means ``fallback``."""
    if value is None or value == "":
        return fallback
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        return fallback
    if not rate.is_finite() or rate <= 0:
        return fallback
    return rate


# ---------------------------------------------------------------------------
# Static (YAML) resolver
# ---------------------------------------------------------------------------


class StaticRateResolver:
    """Resolves rate tables from a YAML file bundled with the application."""

    def __init__(
        self,
        config_path: str | Path | None = None,
        default_table: RateTable = DEFAULT_RATE_TABLE,
    ) -> None:
        self._config_path = Path(config_path) if config_path else _DEFAULT_TABLES_PATH
        self._default = default_table
        self._tables: dict[MunicipalityKey, dict[int | None, RateTable]] = {}
        self._load_config()

    def _load_config(self) -> None:
        if not self._config_path.exists():
            logger.warning("Rate table file %s not found, only defaults available", self._config_path)
            return
        with open(self._config_path) as fh:
            raw = yaml.safe_load(fh) or {}

        for entry in raw.get("tables", []):
            key = MunicipalityKey.of(str(entry["province"]), str(entry["municipality"]))
            year = entry.get("year")
            self._tables.setdefault(key, {})[int(year) if year is not None else None] = (
                self._build_table(entry)
            )

    def _build_table(self, entry: dict[str, Any]) -> RateTable:
        d = self._default
        rented_raw = entry.get("rented_rates") or {}
        rented = {
            kind: _to_rate(rented_raw.get(kind.value), d.rented_rate(kind))
            for kind in ContractKind
        }
        return RateTable(
            default_rate=_to_rate(entry.get("default_rate"), d.default_rate),
            primary_residence_rate=_to_rate(
                entry.get("primary_residence_rate"), d.primary_residence_rate
            ),
            primary_residence_luxury_rate=_to_rate(
                entry.get("primary_residence_luxury_rate"), d.primary_residence_luxury_rate
            ),
            rented_rates=rented,
            primary_residence_deduction=_to_rate(
                entry.get("primary_residence_deduction"), d.primary_residence_deduction
            ),
            source="static",
        )

    @property
    def municipalities(self) -> list[MunicipalityKey]:
        return list(self._tables)

    async def resolve(
        self,
        province: str,
        municipality: str,
        year: int | None = None,
    ) -> RateTable:
        by_year = self._tables.get(MunicipalityKey.of(province, municipality))
        if not by_year:
            raise RateTableNotFound(f"No rates for {municipality} ({province})")

        if year is not None and year in by_year:
            return by_year[year]
        if None in by_year:
            return by_year[None]
        if year is None:
            return by_year[max(y for y in by_year if y is not None)]
        raise RateTableNotFound(f"No {year} rates for {municipality} ({province})")


# ---------------------------------------------------------------------------
# Supabase (PostgREST) resolver
# ---------------------------------------------------------------------------


class SupabaseRateResolver:
    """Looks up rates in the hosted ``aliquote_imu`` table via PostgREST."""

    def __init__(
        self,
        config: RatesConfig,
        default_table: RateTable = DEFAULT_RATE_TABLE,
    ) -> None:
        if not config.supabase_url or not config.supabase_key:
            raise ValueError("Supabase resolver requires supabase_url and supabase_key")
        self._config = config
        self._default = default_table
        self._http = httpx.AsyncClient(
            base_url=config.supabase_url.rstrip("/") + "/rest/v1",
            timeout=httpx.Timeout(config.timeout_seconds),
            headers={
                "apikey": config.supabase_key,
                "Authorization": f"Bearer {config.supabase_key}",
            },
        )

    async def resolve(
        self,
        province: str,
        municipality: str,
        year: int | None = None,
    ) -> RateTable:
        params: dict[str, str] = {
            "select": "*",
            "provincia": f"eq.{province.strip().upper()}",
            "comune": f"ilike.{municipality.strip()}",
            "limit": "1",
        }
        if year is not None:
            params["anno"] = f"eq.{year}"

        resp = await self._http.get(f"/{self._config.table}", params=params)
        resp.raise_for_status()
        rows = resp.json()
        if not rows:
            raise RateTableNotFound(f"No rates for {municipality} ({province})")
        return self._row_to_table(rows[0])

    def _row_to_table(self, row: dict[str, Any]) -> RateTable:
        d = self._default

        def pick(*columns: str, fallback: Decimal) -> Decimal:
            for column in columns:
                if row.get(column) not in (None, "", 0):
                    return _to_rate(row[column], fallback)
            return fallback

        return RateTable(
            default_rate=pick("percentuale_default", "aliquota_normale", fallback=d.default_rate),
            primary_residence_rate=pick(
                "percentuale_abitazione_principale", "aliquota_prima_casa",
                fallback=d.primary_residence_rate,
            ),
            primary_residence_luxury_rate=pick(
                "percentuale_abitazione_principale_lusso",
                fallback=d.primary_residence_luxury_rate,
            ),
            rented_rates={
                ContractKind.MARKET: pick(
                    "percentuale_locato_libero", fallback=d.rented_rate(ContractKind.MARKET)
                ),
                ContractKind.AGREED: pick(
                    "percentuale_locato_concordato", fallback=d.rented_rate(ContractKind.AGREED)
                ),
                ContractKind.TRANSITIONAL: pick(
                    "percentuale_locato_transitorio",
                    fallback=d.rented_rate(ContractKind.TRANSITIONAL),
                ),
                ContractKind.STUDENT: pick(
                    "percentuale_locato_studenti", fallback=d.rented_rate(ContractKind.STUDENT)
                ),
                ContractKind.FAMILY_USE: pick(
                    "percentuale_comodato_parenti",
                    fallback=d.rented_rate(ContractKind.FAMILY_USE),
                ),
            },
            primary_residence_deduction=pick(
                "detrazione_prima_casa", fallback=d.primary_residence_deduction
            ),
            source="database",
        )

    async def close(self) -> None:
        await self._http.aclose()


# ---------------------------------------------------------------------------
# Factory and fan-out
# ---------------------------------------------------------------------------


def create_rate_resolver(config: RatesConfig) -> RateResolver:
    """Factory: select a resolver based on config.provider.

    A Supabase provider without credentials degrades to the static resolver.
    """
    provider = config.provider.lower()
    if provider == "supabase":
        if config.supabase_url and config.supabase_key:
            return SupabaseRateResolver(config)
        logger.warning("Supabase credentials missing, using static rate tables")
        return StaticRateResolver(config.tables_path)
    if provider == "static":
        return StaticRateResolver(config.tables_path)
    raise ValueError(
        f"Unknown rate provider {config.provider!r}. Available: static, supabase"
    )


async def resolve_or_default(
    resolver: RateResolver,
    province: str,
    municipality: str,
    year: int | None = None,
    *,
    timeout: float | None = None,
    default_table: RateTable = DEFAULT_RATE_TABLE,
) -> RateTable:
    """Resolve one table; any failure is logged and replaced by ``default_table``."""
    try:
        return await asyncio.wait_for(
            resolver.resolve(province, municipality, year), timeout=timeout
        )
    except RateTableNotFound:
        logger.warning(
            "Rates not found for %s (%s), year %s: using default table",
            municipality, province, year,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "Rate lookup for %s (%s) timed out: using default table", municipality, province
        )
    except Exception:
        logger.warning(
            "Rate lookup for %s (%s) failed: using default table",
            municipality, province, exc_info=True,
        )
    return default_table


async def resolve_rate_tables(
    properties: Iterable[Property],
    resolver: RateResolver,
    year: int | None = None,
    *,
    timeout: float | None = None,
    default_table: RateTable = DEFAULT_RATE_TABLE,
) -> dict[MunicipalityKey, RateTable]:
    """Resolve one table per distinct (province, municipality) in ``properties``.

    Groups are looked up concurrently; the resolver is called once per group.
    """
    groups: dict[MunicipalityKey, Property] = {}
    for prop in properties:
        groups.setdefault(MunicipalityKey.for_property(prop), prop)

    keys = list(groups)
    tables = await asyncio.gather(*(
        resolve_or_default(
            resolver,
            groups[key].province,
            groups[key].municipality,
            year,
            timeout=timeout,
            default_table=default_table,
        )
        for key in keys
    ))
    return dict(zip(keys, tables))
