"""Billing calendar resolution.

Maps a business unit name to a billing profile and the profile to concrete
period, due, generation and disconnection dates for a target month.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Mapping

from isp_billing.config import DEFAULT_BILLING_PROFILES
from isp_billing.exceptions import ConfigurationError
from isp_billing.models.billing import (
    BillingCycle,
    BillingDates,
    BillingProfile,
    PeriodType,
    TodaysTasks,
)

MID_MONTH_DAY = 15

CYCLE_PERIOD_TYPES = {
    BillingCycle.MID_MONTH: PeriodType.MID_MONTH,
    BillingCycle.FULL_MONTH: PeriodType.FULL_MONTH,
}


def get_last_day_of_month(year: int, month: int) -> int:
    """Last day of ``month`` (1-12), leap years included."""
    return calendar.monthrange(year, month)[1]


def shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    """Move ``(year, month)`` by ``offset`` months."""
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def clamped_date(year: int, month: int, day: int) -> date:
    """Build a date, pulling ``day`` back to the month's last day if needed."""
    return date(year, month, min(day, get_last_day_of_month(year, month)))


class ScheduleResolver:
    """Resolve billing profiles and dates from an injected profile table.

    Parameters
    ----------
    profiles : Mapping[str, BillingProfile]
        Profile table keyed by business-unit name fragment. Matching walks
        the table in order.
    default_key : str | None
        Profile used when no name matches. Defaults to the first
        mid-month profile in the table.
    """

    def __init__(
        self,
        profiles: Mapping[str, BillingProfile] = DEFAULT_BILLING_PROFILES,
        default_key: str | None = None,
    ) -> None:
        if not profiles:
            raise ConfigurationError("Billing profile table is empty")

        self.profiles = profiles
        self.default_key = default_key or self._first_key(PeriodType.MID_MONTH)
        if self.default_key not in profiles:
            raise ConfigurationError(f"Default profile {self.default_key!r} not in table")

        self._cycle_keys = {
            BillingCycle.MID_MONTH: self._first_key(PeriodType.MID_MONTH),
            BillingCycle.FULL_MONTH: self._first_key(PeriodType.FULL_MONTH),
        }

    def _first_key(self, period_type: PeriodType) -> str | None:
        for key, profile in self.profiles.items():
            if profile.period_type == period_type:
                return key
        return None

    def resolve_key(
        self,
        business_unit_name: str,
        cycle_override: BillingCycle | str | None = None,
    ) -> str:
        """Profile key for a business unit, honouring a cycle override."""
        if cycle_override:
            key = self._cycle_keys.get(BillingCycle(cycle_override))
            if key is None:
                raise ConfigurationError(f"No profile defined for cycle {cycle_override!r}")
            return key

        normalized = business_unit_name.lower().strip()
        for key in self.profiles:
            if key in normalized:
                return key
        return self.default_key

    def resolve(
        self,
        business_unit_name: str,
        cycle_override: BillingCycle | str | None = None,
    ) -> BillingProfile:
        """Billing profile for a business unit."""
        return self.profiles[self.resolve_key(business_unit_name, cycle_override)]

    def resolve_for_subscription(
        self,
        business_unit_name: str,
        billing_cycle: BillingCycle | str | None,
    ) -> BillingProfile:
        """Profile a subscription bills on.

        The unit's own profile applies when its period type matches the
        subscription's cycle; otherwise the cycle acts as an override.
        """
        profile = self.resolve(business_unit_name)
        if billing_cycle is None or CYCLE_PERIOD_TYPES[BillingCycle(billing_cycle)] == profile.period_type:
            return profile
        return self.resolve(business_unit_name, billing_cycle)

    def subscription_billing_dates(
        self,
        business_unit_name: str,
        billing_cycle: BillingCycle | str | None,
        year: int,
        month: int,
    ) -> BillingDates:
        """Billing dates for one subscription in a target month."""
        profile = self.resolve_for_subscription(business_unit_name, billing_cycle)
        return compute_billing_dates(profile, year, month)

    def billing_dates(
        self,
        business_unit_name: str,
        year: int,
        month: int,
        cycle_override: BillingCycle | str | None = None,
    ) -> BillingDates:
        """Concrete billing dates for a business unit and target month.

        Mid-month periods run from the 15th of the previous month to the
        15th of ``month``; full-month periods cover ``month`` itself.
        """
        profile = self.resolve(business_unit_name, cycle_override)
        return compute_billing_dates(profile, year, month)

    def next_billing_boundary(self, profile: BillingProfile, activation_date: date) -> date:
        """First billing boundary on or after ``activation_date``."""
        year, month = activation_date.year, activation_date.month

        if profile.period_type == PeriodType.MID_MONTH:
            boundary_day = MID_MONTH_DAY
            if activation_date.day <= boundary_day:
                return date(year, month, boundary_day)
            next_year, next_month = shift_month(year, month, 1)
            return date(next_year, next_month, boundary_day)

        boundary = clamped_date(year, month, profile.due_day)
        if activation_date.day <= boundary.day:
            return boundary
        next_year, next_month = shift_month(year, month, 1)
        return clamped_date(next_year, next_month, profile.due_day)

    def todays_tasks(self, now: datetime, offset_hours: int = 8) -> TodaysTasks:
        """Scheduled actions for the local day containing ``now``.

        ``now`` is converted to a fixed UTC offset (naive values are taken
        as UTC). Matching is exact on day-of-month, so a run skipped on its
        day never fires for that period.
        """
        local = to_local_time(now, offset_hours)
        day = local.day
        last_day = get_last_day_of_month(local.year, local.month)
        tasks = TodaysTasks()

        for key, profile in self.profiles.items():
            if day == profile.invoice_generation_day:
                tasks.should_generate_invoices.append(key)

            due_day = profile.due_day
            if profile.period_type == PeriodType.FULL_MONTH:
                due_day = min(due_day, last_day)
            if day == due_day:
                tasks.should_send_due_reminders.append(key)

            if day == profile.disconnection_day:
                tasks.should_send_disconnection_warnings.append(key)

        return tasks


def compute_billing_dates(profile: BillingProfile, year: int, month: int) -> BillingDates:
    """Dates for one profile and target month."""
    if profile.period_type == PeriodType.MID_MONTH:
        prev_year, prev_month = shift_month(year, month, -1)
        return BillingDates(
            from_date=date(prev_year, prev_month, MID_MONTH_DAY),
            to_date=date(year, month, MID_MONTH_DAY),
            due_date=clamped_date(year, month, profile.due_day),
            disconnection_date=clamped_date(year, month, profile.disconnection_day),
            generation_date=clamped_date(year, month, profile.invoice_generation_day),
        )

    last_day = get_last_day_of_month(year, month)
    if profile.disconnection_next_month:
        disc_year, disc_month = shift_month(year, month, 1)
    else:
        disc_year, disc_month = year, month

    return BillingDates(
        from_date=date(year, month, 1),
        to_date=date(year, month, last_day),
        due_date=date(year, month, min(profile.due_day, last_day)),
        disconnection_date=clamped_date(disc_year, disc_month, profile.disconnection_day),
        generation_date=clamped_date(year, month, profile.invoice_generation_day),
    )


def billing_period_for_change(cycle: BillingCycle | str, change_date: date) -> tuple[date, date]:
    """Billing period containing ``change_date`` for plan-change proration.

    Mid-month periods run from the 15th to the 14th of the following
    month; full-month periods run from the 1st to the last day.
    """
    year, month = change_date.year, change_date.month

    if BillingCycle(cycle) == BillingCycle.MID_MONTH:
        if change_date.day >= MID_MONTH_DAY:
            start = date(year, month, MID_MONTH_DAY)
        else:
            prev_year, prev_month = shift_month(year, month, -1)
            start = date(prev_year, prev_month, MID_MONTH_DAY)
        end_year, end_month = shift_month(start.year, start.month, 1)
        return start, date(end_year, end_month, MID_MONTH_DAY - 1)

    return date(year, month, 1), date(year, month, get_last_day_of_month(year, month))


def to_local_time(now: datetime, offset_hours: int = 8) -> datetime:
    """Convert ``now`` to a fixed-offset local time."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone(timedelta(hours=offset_hours)))


def get_todays_tasks(
    now: datetime,
    resolver: ScheduleResolver | None = None,
    offset_hours: int = 8,
) -> TodaysTasks:
    """Scheduled tasks for ``now`` using the default profile table."""
    return (resolver or ScheduleResolver()).todays_tasks(now, offset_hours)
