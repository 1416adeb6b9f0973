"""Municipal rate table lookup for the IMU calculator."""

from imucalc.rates.resolver import (
    RateResolver,
    RateTableNotFound,
    StaticRateResolver,
    SupabaseRateResolver,
    create_rate_resolver,
    resolve_rate_tables,
)

__all__ = [
    "RateResolver",
    "RateTableNotFound",
    "StaticRateResolver",
    "SupabaseRateResolver",
    "create_rate_resolver",
    "resolve_rate_tables",
]
