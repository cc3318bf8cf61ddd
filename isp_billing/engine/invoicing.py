"""Invoice generation and related billing runs.

Each public operation runs its writes in one store transaction and sends
customer notifications only after that transaction has committed.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from isp_billing.engine.base import BillingService
from isp_billing.engine.plan_change import PlanChangeService
from isp_billing.engine.proration import (
    calculate_prorated_amount,
    needs_prorating,
    to_money,
)
from isp_billing.engine.schedule import compute_billing_dates, get_last_day_of_month, shift_month
from isp_billing.exceptions import BillingError, BillingValidationError, EntityNotFoundError
from isp_billing.models.billing import (
    BillingDates,
    BusinessUnit,
    Invoice,
    PaymentStatus,
    Subscription,
)
from isp_billing.notifications import templates
from isp_billing.notifications.queue import NotificationQueue
from isp_billing.store.base import new_id

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
OPEN_STATUSES = (PaymentStatus.UNPAID, PaymentStatus.PARTIALLY_PAID)


@dataclass
class GenerateInvoiceResult:
    success: bool = False
    generated: int = 0
    skipped: int = 0
    notifications_sent: int = 0
    errors: list[str] = field(default_factory=list)
    invoices: list[Invoice] = field(default_factory=list)
    plan_change_invoices: list[Invoice] = field(default_factory=list)


@dataclass
class InvoiceResult:
    """Outcome of a one-off invoice (disconnection or activation)."""

    success: bool = False
    invoice_id: str | None = None
    amount: Decimal | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class BalanceResult:
    success: bool = False
    previous_balance: Decimal | None = None
    new_balance: Decimal | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class NotificationRunResult:
    """Outcome of a reminder or warning run."""

    success: bool = False
    sent: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class StatusChangeResult:
    """Outcome of a disconnect or activate workflow."""

    success: bool = False
    invoice_id: str | None = None
    amount: Decimal | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class _Draft:
    subscription: Subscription
    invoice: Invoice
    new_balance: Decimal
    referral_applied: bool


class InvoiceService(BillingService):
    """Generate periodic and one-off invoices."""

    def __init__(self, *args, plan_changes: PlanChangeService | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.plan_changes = plan_changes or PlanChangeService(
            self.store, self.config, self.gateway, self.resolver, self._sleep
        )

    # Periodic generation ----------------------------------------------

    def generate_invoices_for_business_unit(
        self,
        business_unit_id: str,
        year: int,
        month: int,
        send_notifications: bool = True,
    ) -> GenerateInvoiceResult:
        """Generate the invoices of one business unit for a target month.

        Parameters
        ----------
        business_unit_id : str
            Business unit to bill.
        year : int
            Target year.
        month : int
            Target month (1-12); invoices are due in this month.
        send_notifications : bool
            Queue an "invoice generated" message per non-zero invoice.

        Returns
        -------
        GenerateInvoiceResult
            Counts, created invoices and collected errors. Re-running for
            the same month skips every subscription already invoiced.
        """
        result = GenerateInvoiceResult()

        try:
            business_unit = self.store.get_business_unit(business_unit_id)
        except EntityNotFoundError:
            result.errors.append("Business unit not found")
            return result

        month_start = date(year, month, 1)
        month_end = date(year, month, get_last_day_of_month(year, month))
        queue = self._new_queue()

        try:
            with self.store.transaction():
                subscriptions = self.store.list_subscriptions(
                    business_unit_id=business_unit_id, active=True
                )
                if not subscriptions:
                    result.success = True
                    return result
                sub_ids = [s.subscription_id for s in subscriptions]

                # Pending plan changes first: their invoices count as this month's
                for change in self.store.list_plan_changes(subscription_ids=sub_ids, processed=False):
                    if change.billing_period_end > month_end:
                        continue
                    invoice = self.plan_changes.realize_pending_plan_change(change)
                    if invoice is not None:
                        result.plan_change_invoices.append(invoice)

                # Balances and versions may have moved
                subscriptions = self.store.list_subscriptions(
                    business_unit_id=business_unit_id, active=True
                )
                invoiced = {
                    inv.subscription_id
                    for inv in self.store.list_invoices(
                        subscription_ids=sub_ids, due_from=month_start, due_to=month_end
                    )
                }
                prior_counts = Counter(
                    inv.subscription_id
                    for inv in self.store.list_invoices(
                        subscription_ids=sub_ids, due_to=month_start - timedelta(days=1)
                    )
                )

                drafts: list[_Draft] = []
                for subscription in subscriptions:
                    if subscription.subscription_id in invoiced:
                        result.skipped += 1
                        continue
                    try:
                        dates = self.resolver.subscription_billing_dates(
                            business_unit.name, subscription.billing_cycle, year, month
                        )
                        draft = self._draft_invoice(
                            subscription, dates, prior_counts[subscription.subscription_id]
                        )
                    except BillingError as exc:
                        logger.warning(
                            "Skipping subscription %s: %s",
                            subscription.subscription_id,
                            exc,
                            extra={"extra": {"subscription_id": subscription.subscription_id}},
                        )
                        result.errors.append(f"Subscription {subscription.subscription_id}: {exc}")
                        continue
                    drafts.append(draft)

                self.store.add_invoices(d.invoice for d in drafts)

                for draft in drafts:
                    self.store.update_subscription(
                        draft.subscription.subscription_id,
                        expected_version=draft.subscription.version,
                        balance=draft.new_balance,
                        referral_credit_applied=True if draft.referral_applied else None,
                    )

                    if send_notifications and draft.invoice.amount_due > 0:
                        customer = self.store.get_customer(draft.subscription.customer_id)
                        self._notify(
                            queue,
                            customer,
                            draft.subscription,
                            "invoice_generated",
                            templates.invoice_generated(
                                customer.name,
                                draft.invoice.amount_due,
                                draft.invoice.due_date,
                                business_unit.name,
                                self.signature,
                            ),
                            invoice_id=draft.invoice.invoice_id,
                        )
        except BillingError as exc:
            queue.discard()
            logger.error(
                "Invoice generation for %s %d-%02d aborted: %s",
                business_unit.name,
                year,
                month,
                exc,
            )
            result.errors.append(f"Error writing invoices: {exc}")
            result.plan_change_invoices.clear()
            return result

        result.generated = len(drafts)
        result.invoices = [d.invoice for d in drafts]
        result.notifications_sent = queue.dispatch().sent
        result.success = True

        logger.info(
            "Generated %d invoices for %s (%d-%02d): skipped=%d, errors=%d",
            result.generated,
            business_unit.name,
            year,
            month,
            result.skipped,
            len(result.errors),
            extra={"extra": {"business_unit": business_unit.name}},
        )
        return result

    def _is_referral_eligible(self, subscription: Subscription) -> bool:
        if subscription.referral_credit_applied or not subscription.referrer_id:
            return False

        # Earliest install across all of the customer's subscriptions;
        # ties go to the one created first.
        siblings = self.store.list_subscriptions(customer_id=subscription.customer_id)
        first = min(siblings, key=lambda s: s.date_installed or date.max)
        return first.subscription_id == subscription.subscription_id

    def _draft_invoice(
        self,
        subscription: Subscription,
        dates: BillingDates,
        previous_invoice_count: int,
    ) -> _Draft:
        plan = self.store.get_plan(subscription.plan_id)
        amount = plan.monthly_fee
        is_prorated = False
        prorated_days = 0

        installed = subscription.date_installed
        if (
            installed is not None
            and previous_invoice_count == 0
            and needs_prorating(installed, dates.generation_date, dates.from_date)
        ):
            prorated = calculate_prorated_amount(plan.monthly_fee, installed, dates.due_date)
            amount = prorated.amount
            is_prorated = True
            prorated_days = prorated.days

        original_amount = amount

        discount = ZERO
        referral_applied = self._is_referral_eligible(subscription)
        if referral_applied:
            discount = min(self.config.referral_discount, amount)
            amount -= discount

        # Credit is absorbed first; whatever is left stays on the balance
        balance = subscription.balance
        credits = ZERO
        if balance < 0:
            credits = min(-balance, amount)
            amount -= credits
            balance += credits

        total = to_money(amount + max(balance, ZERO))
        new_balance = to_money(total + min(balance, ZERO))

        invoice = Invoice(
            invoice_id=new_id(),
            subscription_id=subscription.subscription_id,
            from_date=dates.from_date,
            to_date=dates.to_date,
            due_date=dates.due_date,
            amount_due=total,
            payment_status=PaymentStatus.PAID if total == 0 else PaymentStatus.UNPAID,
            is_prorated=is_prorated,
            prorated_days=prorated_days,
            original_amount=original_amount,
            discount_applied=discount,
            credits_applied=credits,
        )
        return _Draft(subscription, invoice, new_balance, referral_applied)

    # One-off invoices --------------------------------------------------

    def _disconnection_invoice(self, subscription: Subscription, disconnection_date: date) -> Invoice:
        plan = self.store.get_plan(subscription.plan_id)
        history = self.store.list_invoices(subscription_ids=[subscription.subscription_id])
        if not history:
            raise BillingValidationError("No previous invoice found. Cannot determine billing period.")
        from_date = history[-1].to_date + timedelta(days=1)

        prorated = calculate_prorated_amount(plan.monthly_fee, from_date, disconnection_date)
        if prorated.days <= 0:
            raise BillingValidationError("No days to bill for disconnection period")

        return Invoice(
            invoice_id=new_id(),
            subscription_id=subscription.subscription_id,
            from_date=from_date,
            to_date=disconnection_date,
            due_date=disconnection_date,
            amount_due=prorated.amount,
            is_prorated=True,
            prorated_days=prorated.days,
            notes=f"Disconnection: {prorated.days} days from {from_date} to {disconnection_date}",
        )

    def _activation_invoice(
        self,
        subscription: Subscription,
        business_unit: BusinessUnit,
        activation_date: date,
    ) -> Invoice:
        plan = self.store.get_plan(subscription.plan_id)
        profile = self.resolver.resolve_for_subscription(
            business_unit.name, subscription.billing_cycle
        )
        boundary = self.resolver.next_billing_boundary(profile, activation_date)

        prorated = calculate_prorated_amount(plan.monthly_fee, activation_date, boundary)
        if prorated.days <= 0:
            raise BillingValidationError("No days to bill for activation period")

        return Invoice(
            invoice_id=new_id(),
            subscription_id=subscription.subscription_id,
            from_date=activation_date,
            to_date=boundary,
            due_date=boundary,
            amount_due=prorated.amount,
            is_prorated=True,
            prorated_days=prorated.days,
            notes=f"Activation: {prorated.days} days from {activation_date} to {boundary}",
        )

    def _write_one_off(
        self,
        subscription: Subscription,
        business_unit: BusinessUnit,
        invoice: Invoice,
        queue: NotificationQueue | None,
        active: bool | None = None,
    ) -> None:
        """Insert a one-off invoice and add it to the balance (caller holds the transaction)."""
        self.store.add_invoice(invoice)
        self.store.update_subscription(
            subscription.subscription_id,
            expected_version=subscription.version,
            balance=subscription.balance + invoice.amount_due,
            active=active,
        )
        if queue is not None:
            customer = self.store.get_customer(subscription.customer_id)
            self._notify(
                queue,
                customer,
                subscription,
                "invoice_generated",
                templates.invoice_generated(
                    customer.name,
                    invoice.amount_due,
                    invoice.due_date,
                    business_unit.name,
                    self.signature,
                ),
                invoice_id=invoice.invoice_id,
            )

    def generate_disconnection_invoice(
        self,
        subscription_id: str,
        disconnection_date: date,
        send_notification: bool = True,
    ) -> InvoiceResult:
        """Bill the days since the last invoice's period up to disconnection.

        Fails when the subscription has never been invoiced, since there
        is no period end to prorate from.
        """
        queue = self._new_queue()
        try:
            with self.store.transaction():
                subscription = self.store.get_subscription(subscription_id)
                business_unit = self.store.get_business_unit(subscription.business_unit_id)
                invoice = self._disconnection_invoice(subscription, disconnection_date)
                self._write_one_off(
                    subscription, business_unit, invoice, queue if send_notification else None
                )
        except BillingError as exc:
            logger.warning("Disconnection invoice for %s failed: %s", subscription_id, exc)
            return InvoiceResult(errors=[str(exc)])

        queue.dispatch()
        return InvoiceResult(success=True, invoice_id=invoice.invoice_id, amount=invoice.amount_due)

    def generate_activation_invoice(
        self,
        subscription_id: str,
        activation_date: date,
        send_notification: bool = True,
    ) -> InvoiceResult:
        """Bill from (re)activation up to the next billing boundary."""
        queue = self._new_queue()
        try:
            with self.store.transaction():
                subscription = self.store.get_subscription(subscription_id)
                business_unit = self.store.get_business_unit(subscription.business_unit_id)
                invoice = self._activation_invoice(subscription, business_unit, activation_date)
                self._write_one_off(
                    subscription, business_unit, invoice, queue if send_notification else None
                )
        except BillingError as exc:
            logger.warning("Activation invoice for %s failed: %s", subscription_id, exc)
            return InvoiceResult(errors=[str(exc)])

        queue.dispatch()
        return InvoiceResult(success=True, invoice_id=invoice.invoice_id, amount=invoice.amount_due)

    # Maintenance -------------------------------------------------------

    def recalculate_balance(self, subscription_id: str) -> BalanceResult:
        """Reset a balance to total invoiced minus total paid."""
        try:
            with self.store.transaction():
                subscription = self.store.get_subscription(subscription_id)
                invoiced = sum(
                    (inv.amount_due for inv in self.store.list_invoices(subscription_ids=[subscription_id])),
                    ZERO,
                )
                paid = sum(
                    (p.amount for p in self.store.list_payments(subscription_id=subscription_id)),
                    ZERO,
                )
                new_balance = to_money(invoiced - paid)
                if new_balance != subscription.balance:
                    self.store.update_subscription(
                        subscription_id,
                        expected_version=subscription.version,
                        balance=new_balance,
                    )
        except BillingError as exc:
            logger.error("Balance recalculation for %s failed: %s", subscription_id, exc)
            return BalanceResult(errors=[str(exc)])

        if new_balance != subscription.balance:
            logger.info(
                "Balance of %s corrected: %s -> %s",
                subscription_id,
                subscription.balance,
                new_balance,
            )
        return BalanceResult(
            success=True,
            previous_balance=subscription.balance,
            new_balance=new_balance,
        )

    # Reminders ---------------------------------------------------------

    def send_due_date_reminders(
        self,
        business_unit_id: str,
        today: date | None = None,
    ) -> NotificationRunResult:
        """Remind customers whose unpaid invoice is due today."""
        today = today or date.today()
        result = NotificationRunResult()
        queue = self._new_queue()

        try:
            self.store.get_business_unit(business_unit_id)
            subscriptions = {
                s.subscription_id: s
                for s in self.store.list_subscriptions(business_unit_id=business_unit_id)
            }
            due_today = self.store.list_invoices(
                subscription_ids=list(subscriptions),
                due_from=today,
                due_to=today,
                statuses=[PaymentStatus.UNPAID],
            )
            for invoice in due_today:
                subscription = subscriptions[invoice.subscription_id]
                customer = self.store.get_customer(subscription.customer_id)
                self._notify(
                    queue,
                    customer,
                    subscription,
                    "due_reminder",
                    templates.due_date_reminder(
                        customer.name, invoice.amount_due, invoice.due_date, self.signature
                    ),
                    invoice_id=invoice.invoice_id,
                )
        except BillingError as exc:
            result.errors.append(str(exc))
            return result

        summary = queue.dispatch()
        result.sent, result.failed = summary.sent, summary.failed
        result.errors.extend(summary.errors)
        result.success = True
        return result

    def send_disconnection_warnings(
        self,
        business_unit_id: str,
        today: date | None = None,
    ) -> NotificationRunResult:
        """Warn customers with open invoices when today is the disconnection date.

        Subscriptions whose balance is settled are not warned.

        For profiles that disconnect in the following month, today's
        warning belongs to the previous month's billing period.
        """
        today = today or date.today()
        result = NotificationRunResult()
        queue = self._new_queue()

        try:
            business_unit = self.store.get_business_unit(business_unit_id)
            profile = self.resolver.resolve(business_unit.name)

            candidates = [
                compute_billing_dates(profile, *shift_month(today.year, today.month, offset))
                for offset in (0, -1)
            ]
            if not any(d.disconnection_date == today for d in candidates):
                result.success = True
                return result

            subscriptions = {
                s.subscription_id: s
                for s in self.store.list_subscriptions(business_unit_id=business_unit_id)
            }
            open_invoices = self.store.list_invoices(
                subscription_ids=list(subscriptions),
                statuses=OPEN_STATUSES,
            )
            warned: set[str] = set()
            for invoice in open_invoices:
                if invoice.subscription_id in warned:
                    continue
                warned.add(invoice.subscription_id)
                subscription = subscriptions[invoice.subscription_id]
                if subscription.balance <= 0:
                    continue
                customer = self.store.get_customer(subscription.customer_id)
                self._notify(
                    queue,
                    customer,
                    subscription,
                    "disconnection_warning",
                    templates.disconnection_warning(customer.name, today, self.signature),
                )
        except BillingError as exc:
            result.errors.append(str(exc))
            return result

        summary = queue.dispatch()
        result.sent, result.failed = summary.sent, summary.failed
        result.errors.extend(summary.errors)
        result.success = True
        return result

    # Service status ----------------------------------------------------

    def disconnect_subscription(
        self,
        subscription_id: str,
        disconnection_date: date,
        generate_invoice: bool = True,
    ) -> StatusChangeResult:
        """Optionally bill the final partial period, then deactivate."""
        return self._set_active(subscription_id, False, disconnection_date, generate_invoice)

    def activate_subscription(
        self,
        subscription_id: str,
        activation_date: date,
        generate_invoice: bool = True,
    ) -> StatusChangeResult:
        """Optionally bill up to the next billing boundary, then reactivate."""
        return self._set_active(subscription_id, True, activation_date, generate_invoice)

    def _set_active(
        self,
        subscription_id: str,
        active: bool,
        effective_date: date,
        generate_invoice: bool,
    ) -> StatusChangeResult:
        result = StatusChangeResult()
        queue = self._new_queue()

        try:
            with self.store.transaction():
                subscription = self.store.get_subscription(subscription_id)
                if not generate_invoice:
                    self.store.update_subscription(
                        subscription_id,
                        expected_version=subscription.version,
                        active=active,
                    )
                else:
                    business_unit = self.store.get_business_unit(subscription.business_unit_id)
                    if active:
                        invoice = self._activation_invoice(subscription, business_unit, effective_date)
                    else:
                        invoice = self._disconnection_invoice(subscription, effective_date)
                    self._write_one_off(subscription, business_unit, invoice, queue, active=active)
                    result.invoice_id, result.amount = invoice.invoice_id, invoice.amount_due
        except BillingError as exc:
            logger.error("Could not set subscription %s active=%s: %s", subscription_id, active, exc)
            result.errors.append(str(exc))
            result.invoice_id = result.amount = None
            return result

        queue.dispatch()
        logger.info("Subscription %s active=%s", subscription_id, active)
        result.success = True
        return result
