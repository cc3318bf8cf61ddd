"""Mid-cycle plan upgrades and downgrades.

A change settles the old plan immediately: unused days are credited when
the current period is already paid, otherwise the days used so far are
invoiced. The new plan's share of the period is invoiced later, by the
next generation run, through ``realize_pending_plan_change``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from isp_billing.engine.base import BillingService
from isp_billing.engine.proration import days_between, prorate_days
from isp_billing.engine.schedule import billing_period_for_change
from isp_billing.exceptions import BillingError, BillingValidationError
from isp_billing.models.billing import (
    BillingCycle,
    Invoice,
    PaymentStatus,
    PlanChange,
)
from isp_billing.store.base import new_id

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class PeriodSlice:
    """Part of a billing period billed at one plan's rate."""

    days: int
    amount: Decimal  # negative for a credit
    from_date: date
    to_date: date


@dataclass(frozen=True)
class PlanChangePreview:
    """What a plan change would charge or credit, without writing anything."""

    old_plan: PeriodSlice
    new_plan: PeriodSlice
    billing_period_start: date
    billing_period_end: date
    is_paid: bool
    is_upgrade: bool
    total: Decimal
    total_difference: Decimal  # versus keeping the old plan


@dataclass
class PlanChangeResult:
    success: bool = False
    adjustment: Decimal = ZERO  # positive charge or negative credit on the old plan
    preview: PlanChangePreview | None = None
    plan_change_id: str | None = None
    invoice_id: str | None = None
    errors: list[str] = field(default_factory=list)


def preview_plan_change(
    current_monthly_fee: Decimal,
    new_monthly_fee: Decimal,
    billing_cycle: BillingCycle | str,
    change_date: date,
    is_paid: bool = False,
) -> PlanChangePreview:
    """Compute both halves of a plan change for the period containing ``change_date``.

    Parameters
    ----------
    current_monthly_fee : Decimal
        Fee of the plan being left.
    new_monthly_fee : Decimal
        Fee of the plan being joined.
    billing_cycle : BillingCycle | str
        Subscription cycle (``"15th"`` or ``"30th"``).
    change_date : date
        First day on the new plan.
    is_paid : bool
        Whether the current period is already settled.

    Returns
    -------
    PlanChangePreview
        Old-plan charge (or credit when paid), new-plan charge and totals.
    """
    period_start, period_end = billing_period_for_change(billing_cycle, change_date)
    old_plan_end = change_date - timedelta(days=1)

    new_days = days_between(change_date, period_end)
    new_slice = PeriodSlice(
        days=new_days,
        amount=prorate_days(new_monthly_fee, new_days),
        from_date=change_date,
        to_date=period_end,
    )

    if is_paid:
        # Unused old-plan days overlap the new plan's days exactly
        old_slice = PeriodSlice(
            days=new_days,
            amount=-prorate_days(current_monthly_fee, new_days),
            from_date=change_date,
            to_date=period_end,
        )
        total_if_unchanged = ZERO
    else:
        old_days = days_between(period_start, old_plan_end) if old_plan_end >= period_start else 0
        old_slice = PeriodSlice(
            days=old_days,
            amount=prorate_days(current_monthly_fee, old_days),
            from_date=period_start,
            to_date=old_plan_end,
        )
        total_if_unchanged = Decimal(current_monthly_fee)

    total = old_slice.amount + new_slice.amount
    return PlanChangePreview(
        old_plan=old_slice,
        new_plan=new_slice,
        billing_period_start=period_start,
        billing_period_end=period_end,
        is_paid=is_paid,
        is_upgrade=new_monthly_fee > current_monthly_fee,
        total=total,
        total_difference=total - total_if_unchanged,
    )


class PlanChangeService(BillingService):
    """Apply plan changes and realise their deferred new-plan invoices."""

    def _period_is_paid(self, subscription_id: str, start: date, end: date) -> bool:
        paid = self.store.list_invoices(
            subscription_ids=[subscription_id],
            statuses=[PaymentStatus.PAID],
        )
        return any(inv.from_date <= start and inv.to_date >= end for inv in paid)

    def preview(
        self,
        subscription_id: str,
        new_plan_id: str,
        change_date: date | None = None,
    ) -> PlanChangePreview:
        """Preview a change for a stored subscription (raises on unknown ids)."""
        change_date = change_date or date.today()
        subscription = self.store.get_subscription(subscription_id)
        old_plan = self.store.get_plan(subscription.plan_id)
        new_plan = self.store.get_plan(new_plan_id)

        start, end = billing_period_for_change(subscription.billing_cycle, change_date)
        return preview_plan_change(
            old_plan.monthly_fee,
            new_plan.monthly_fee,
            subscription.billing_cycle,
            change_date,
            is_paid=self._period_is_paid(subscription_id, start, end),
        )

    def change_plan(
        self,
        subscription_id: str,
        new_plan_id: str,
        change_date: date | None = None,
    ) -> PlanChangeResult:
        """Move a subscription to another plan effective ``change_date``.

        The old-plan adjustment, the plan-change record and the plan switch
        commit together or not at all.
        """
        change_date = change_date or date.today()
        result = PlanChangeResult()

        try:
            with self.store.transaction():
                subscription = self.store.get_subscription(subscription_id)
                old_plan = self.store.get_plan(subscription.plan_id)
                new_plan = self.store.get_plan(new_plan_id)

                if old_plan.plan_id == new_plan.plan_id:
                    raise BillingValidationError("New plan is the same as current plan")

                start, end = billing_period_for_change(subscription.billing_cycle, change_date)
                is_paid = self._period_is_paid(subscription_id, start, end)
                preview = preview_plan_change(
                    old_plan.monthly_fee,
                    new_plan.monthly_fee,
                    subscription.billing_cycle,
                    change_date,
                    is_paid=is_paid,
                )
                old_slice = preview.old_plan
                invoice_id = None

                if not is_paid and old_slice.amount > 0:
                    invoice = Invoice(
                        invoice_id=new_id(),
                        subscription_id=subscription_id,
                        from_date=old_slice.from_date,
                        to_date=old_slice.to_date,
                        due_date=end,
                        amount_due=old_slice.amount,
                        is_prorated=True,
                        prorated_days=old_slice.days,
                        notes=(
                            f"{old_plan.name} (Prorated: {old_slice.days} days from "
                            f"{old_slice.from_date} to {old_slice.to_date}) - "
                            f"Plan changed to {new_plan.name}"
                        ),
                    )
                    self.store.add_invoice(invoice)
                    invoice_id = invoice.invoice_id

                # A credit only applies to a paid period; an unpaid one is
                # charged only when an invoice was written.
                adjustment = old_slice.amount if (is_paid or invoice_id) else ZERO

                self.store.update_subscription(
                    subscription_id,
                    expected_version=subscription.version,
                    balance=subscription.balance + adjustment,
                    plan_id=new_plan.plan_id,
                )

                change = PlanChange(
                    plan_change_id=new_id(),
                    subscription_id=subscription_id,
                    old_plan_id=old_plan.plan_id,
                    new_plan_id=new_plan.plan_id,
                    old_monthly_fee=old_plan.monthly_fee,
                    new_monthly_fee=new_plan.monthly_fee,
                    change_date=change_date,
                    prorated_amount=adjustment,
                    prorated_days=old_slice.days if adjustment else 0,
                    billing_period_start=start,
                    billing_period_end=end,
                    invoice_id=invoice_id,
                )
                self.store.add_plan_change(change)
        except BillingValidationError as exc:
            result.errors.append(str(exc))
            return result
        except BillingError as exc:
            logger.error("Plan change failed for subscription %s: %s", subscription_id, exc)
            result.errors.append(f"Plan change failed: {exc}")
            return result

        logger.info(
            "Subscription %s changed plan %s -> %s on %s (adjustment %s)",
            subscription_id,
            old_plan.plan_id,
            new_plan.plan_id,
            change_date,
            adjustment,
        )
        result.success = True
        result.adjustment = adjustment
        result.preview = preview
        result.plan_change_id = change.plan_change_id
        result.invoice_id = invoice_id
        return result

    def get_pending_plan_changes(self, subscription_id: str | None = None) -> list[PlanChange]:
        """Unprocessed plan changes, oldest change date first."""
        ids = [subscription_id] if subscription_id else None
        return self.store.list_plan_changes(subscription_ids=ids, processed=False)

    def realize_pending_plan_change(self, change: PlanChange) -> Invoice | None:
        """Invoice the new plan's share of the change period and mark it processed.

        Returns the new invoice, or None when the new plan costs nothing
        for the remaining days.
        """
        days = days_between(change.change_date, change.billing_period_end)
        amount = prorate_days(change.new_monthly_fee, days)

        with self.store.transaction():
            if amount <= 0:
                self.store.mark_plan_change_processed(change.plan_change_id)
                return None

            plan = self.store.get_plan(change.new_plan_id)
            invoice = Invoice(
                invoice_id=new_id(),
                subscription_id=change.subscription_id,
                from_date=change.change_date,
                to_date=change.billing_period_end,
                due_date=change.billing_period_end,
                amount_due=amount,
                is_prorated=True,
                prorated_days=days,
                notes=(
                    f"{plan.name} (Prorated: {days} days from {change.change_date} "
                    f"to {change.billing_period_end}) - After plan change"
                ),
            )
            self.store.add_invoice(invoice)

            subscription = self.store.get_subscription(change.subscription_id)
            self.store.update_subscription(
                change.subscription_id,
                expected_version=subscription.version,
                balance=subscription.balance + amount,
            )
            self.store.mark_plan_change_processed(change.plan_change_id)

        logger.info(
            "Realised plan change %s: invoice %s for %s",
            change.plan_change_id,
            invoice.invoice_id,
            amount,
        )
        return invoice
