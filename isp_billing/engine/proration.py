"""Pro-rating arithmetic.

All partial-period charges use a flat 30-day month: the daily rate is
``monthly_fee / 30`` whatever the calendar month length.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

DAYS_PER_MONTH = 30
CENT = Decimal("0.01")


@dataclass(frozen=True)
class ProratedAmount:
    """Result of pro-rating a monthly fee over a day count."""

    amount: Decimal
    days: int
    daily_rate: Decimal  # rounded to cents, for display


def to_money(value: Decimal | int | str) -> Decimal:
    """Round to cents, halves away from zero."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_daily_rate(monthly_fee: Decimal) -> Decimal:
    """Unrounded daily rate for a monthly fee."""
    return Decimal(monthly_fee) / DAYS_PER_MONTH


def _elapsed_days(start: date | datetime, end: date | datetime) -> int:
    """Whole days from ``start`` to ``end``, rounding partial days up."""
    delta: timedelta = end - start
    return math.ceil(delta.total_seconds() / 86400)


def prorate_days(monthly_fee: Decimal, days: int) -> Decimal:
    """Charge for an explicit number of days (no clamping)."""
    return to_money(Decimal(monthly_fee) * days / DAYS_PER_MONTH)


def calculate_prorated_amount(
    monthly_fee: Decimal,
    start: date | datetime,
    end: date | datetime,
) -> ProratedAmount:
    """Pro-rate ``monthly_fee`` over ``start`` → ``end``.

    The day count is clamped to ``[0, 30]`` so a single prorated charge
    never exceeds a full month.

    Parameters
    ----------
    monthly_fee : Decimal
        Plan monthly fee.
    start : date | datetime
        First billable day (e.g. installation date).
    end : date | datetime
        Period boundary (e.g. due date).

    Returns
    -------
    ProratedAmount
        Amount rounded to cents, effective days and daily rate.
    """
    days = max(0, min(DAYS_PER_MONTH, _elapsed_days(start, end)))
    return ProratedAmount(
        amount=prorate_days(monthly_fee, days),
        days=days,
        daily_rate=to_money(calculate_daily_rate(monthly_fee)),
    )


def needs_prorating(
    date_installed: date,
    generation_date: date,
    billing_period_start: date,
) -> bool:
    """Whether a first invoice should be prorated instead of a full fee.

    True when service started after the period began, or within the 30
    days before invoice generation.
    """
    return (
        date_installed > billing_period_start
        or date_installed > generation_date - timedelta(days=DAYS_PER_MONTH)
    )


def days_between(start: date, end: date) -> int:
    """Inclusive day count: both endpoints are billable days."""
    return _elapsed_days(start, end) + 1


def is_first_invoice_for_customer(
    date_installed: date,
    generation_date: date,
    previous_invoice_count: int,
) -> bool:
    """Whether this generation run produces the subscription's first invoice."""
    if previous_invoice_count > 0:
        return False
    return date_installed <= generation_date
