"""Tests for pro-rating arithmetic."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from isp_billing.engine.proration import (
    calculate_daily_rate,
    calculate_prorated_amount,
    days_between,
    is_first_invoice_for_customer,
    needs_prorating,
    prorate_days,
    to_money,
)


class TestToMoney:
    """Cent rounding."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (Decimal("333.333"), Decimal("333.33")),
            (Decimal("0.005"), Decimal("0.01")),
            (Decimal("-0.005"), Decimal("-0.01")),
            (100, Decimal("100.00")),
        ],
    )
    def test_half_up(self, value, expected) -> None:
        assert to_money(value) == expected


class TestCalculateProratedAmount:
    """Fee pro-rating over a date range."""

    def test_ten_days_of_thirty(self) -> None:
        result = calculate_prorated_amount(Decimal("1000"), date(2024, 3, 5), date(2024, 3, 15))

        assert result.days == 10
        assert result.amount == Decimal("333.33")
        assert result.daily_rate == Decimal("33.33")

    def test_clamped_to_thirty_days(self) -> None:
        """A 31-day span never bills more than one month."""
        result = calculate_prorated_amount(Decimal("1000"), date(2024, 1, 1), date(2024, 2, 1))

        assert result.days == 30
        assert result.amount == Decimal("1000.00")

    def test_negative_span_is_zero(self) -> None:
        result = calculate_prorated_amount(Decimal("1000"), date(2024, 3, 15), date(2024, 3, 5))

        assert result.days == 0
        assert result.amount == Decimal("0.00")

    def test_partial_day_rounds_up(self) -> None:
        result = calculate_prorated_amount(
            Decimal("900"), datetime(2024, 3, 1, 12, 0), datetime(2024, 3, 3, 0, 0)
        )

        assert result.days == 2
        assert result.amount == Decimal("60.00")

    def test_daily_rate_unrounded(self) -> None:
        assert calculate_daily_rate(Decimal("900")) == Decimal("30")
        assert to_money(calculate_daily_rate(Decimal("1000"))) == Decimal("33.33")


class TestProrateDays:
    """Explicit day counts."""

    def test_not_clamped(self) -> None:
        assert prorate_days(Decimal("1500"), 31) == Decimal("1550.00")

    def test_zero_days(self) -> None:
        assert prorate_days(Decimal("1500"), 0) == Decimal("0.00")


class TestDaysBetween:
    """Inclusive day counts."""

    def test_same_day_counts_once(self) -> None:
        assert days_between(date(2024, 3, 1), date(2024, 3, 1)) == 1

    def test_both_endpoints_count(self) -> None:
        assert days_between(date(2024, 3, 15), date(2024, 4, 14)) == 31


class TestNeedsProrating:
    """First-invoice pro-rating decision."""

    def test_installed_after_period_start(self) -> None:
        assert needs_prorating(date(2024, 2, 20), date(2024, 3, 10), date(2024, 2, 15))

    def test_installed_within_thirty_days_of_generation(self) -> None:
        assert needs_prorating(date(2024, 2, 12), date(2024, 3, 10), date(2024, 2, 15))

    def test_long_standing_install(self) -> None:
        assert not needs_prorating(date(2023, 6, 1), date(2024, 3, 10), date(2024, 2, 15))


class TestIsFirstInvoice:
    """First invoice detection."""

    def test_prior_invoices(self) -> None:
        assert not is_first_invoice_for_customer(date(2024, 1, 1), date(2024, 3, 10), 2)

    def test_installed_before_generation(self) -> None:
        assert is_first_invoice_for_customer(date(2024, 1, 1), date(2024, 3, 10), 0)

    def test_installed_after_generation(self) -> None:
        assert not is_first_invoice_for_customer(date(2024, 3, 11), date(2024, 3, 10), 0)
