#!/usr/bin/env python3
"""CLI script to compute IMU for a file of properties.

The input is a YAML or JSON file holding either a list of property records
or a mapping with ``immobili`` (and optionally ``anno``).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import yaml

# Ensure the project source is importable when running the script directly.
_project_root = Path(__file__).resolve().parent.parent
_src = _project_root / "src"
if str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from imucalc.core.config import Settings  # noqa: E402
from imucalc.export.renderer import ReportRenderer, describe_condition, format_eur  # noqa: E402
from imucalc.finance.calculator import ImuCalculator  # noqa: E402
from imucalc.finance.imu import ImuEngine  # noqa: E402
from imucalc.finance.models import ImuValidationError  # noqa: E402
from imucalc.finance.records import parse_properties  # noqa: E402
from imucalc.finance.tables import ValuationMultipliers  # noqa: E402
from imucalc.rates.resolver import create_rate_resolver  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compute the IMU owed for a list of properties."
    )
    parser.add_argument("input", type=str, help="YAML or JSON file with the properties.")
    parser.add_argument(
        "--year",
        type=int,
        default=None,
        help="Tax year (defaults to IMU_TAX_YEAR or the year in the file).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON instead of a text summary.",
    )
    parser.add_argument(
        "--pdf",
        type=str,
        default=None,
        help="Also write the PDF report to this path.",
    )
    return parser.parse_args()


def load_records(path: Path) -> tuple[list[dict], int | None]:
    with open(path) as fh:
        data = yaml.safe_load(fh)  # JSON is a subset of YAML
    if isinstance(data, list):
        return data, None
    if isinstance(data, dict) and isinstance(data.get("immobili", []), list):
        return data.get("immobili", []), data.get("anno")
    raise ImuValidationError(f"{path}: expected a list or a mapping with 'immobili'")


async def main() -> None:
    args = parse_args()
    settings = Settings()
    logging.basicConfig(level=settings.log_level.upper())

    try:
        records, file_year = load_records(Path(args.input))
        properties = parse_properties(records)
    except (OSError, yaml.YAMLError, ImuValidationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    resolver = create_rate_resolver(settings.rates)
    calculator = ImuCalculator(
        resolver,
        engine=ImuEngine(ValuationMultipliers(fallback=settings.rates.fallback_multiplier)),
        tax_year=settings.tax_year,
        lookup_timeout=settings.rates.timeout_seconds,
    )
    try:
        outcome = await calculator.calculate(properties, args.year or file_year)
    except ImuValidationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        close = getattr(resolver, "close", None)
        if close is not None:
            await close()

    renderer = ReportRenderer()
    if args.json:
        print(renderer.render_json(properties, outcome.assessment, outcome.installments))
    else:
        print(f"IMU {outcome.year}")
        for prop in properties:
            result = outcome.assessment.result_for(prop.id)
            print(
                f"  {prop.id:<12} {prop.category:<5} {describe_condition(prop):<40} "
                f"aliquota {result.rate}%  {format_eur(result.tax_due)}"
            )
        plan = outcome.installments
        print(f"Totale: {format_eur(outcome.assessment.total)}")
        print(f"  Prima rata   ({plan.first_due.isoformat()}): {format_eur(plan.first)}")
        print(f"  Seconda rata ({plan.second_due.isoformat()}): {format_eur(plan.second)}")

    if args.pdf:
        pdf_bytes = renderer.render_assessment_pdf(
            properties, outcome.assessment, outcome.installments
        )
        Path(args.pdf).write_bytes(pdf_bytes)
        print(f"PDF report written to {args.pdf}")


if __name__ == "__main__":
    asyncio.run(main())
