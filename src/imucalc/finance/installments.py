"""Split a yearly IMU total into the two statutory installments."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from imucalc.finance.models import InstallmentPlan, round_currency


FIRST_DUE = (6, 16)
SECOND_DUE = (12, 16)


def split_installments(total: Decimal, year: int) -> InstallmentPlan:
    """Return the June/December installments for ``total``.

    The first installment is half the total rounded to cents; the second
    is the exact remainder, so the two always add up to ``total``.
    """
    if not isinstance(total, Decimal):
        total = Decimal(str(total))
    first = round_currency(total / 2)
    second = total - first
    return InstallmentPlan(
        year=year,
        total=total,
        first=first,
        second=second,
        first_due=date(year, *FIRST_DUE),
        second_due=date(year, *SECOND_DUE),
    )
