"""Payment application and reconciliation.

Payments are append-only ledger rows. Each one lowers the subscription
balance by its amount and is allocated to one invoice, whose running
``amount_paid`` decides its status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal

from isp_billing.engine.base import BillingService
from isp_billing.engine.proration import to_money
from isp_billing.exceptions import BillingError, BillingValidationError
from isp_billing.models.billing import (
    Invoice,
    Payment,
    PaymentMode,
    PaymentStatus,
    PaymentSubmission,
    SubmissionStatus,
    Subscription,
)
from isp_billing.notifications import templates
from isp_billing.notifications.queue import NotificationQueue
from isp_billing.store.base import new_id

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
OPEN_STATUSES = (PaymentStatus.UNPAID, PaymentStatus.PARTIALLY_PAID)


def determine_payment_status(total_paid: Decimal, amount_due: Decimal) -> PaymentStatus:
    """Status of an invoice given what has been paid against it."""
    if total_paid >= amount_due:
        return PaymentStatus.PAID
    if total_paid > 0:
        return PaymentStatus.PARTIALLY_PAID
    return PaymentStatus.UNPAID


def calculate_new_balance(previous_balance: Decimal, payment_amount: Decimal) -> Decimal:
    """Balance after a payment; negative means the customer holds credit."""
    return to_money(previous_balance - payment_amount)


@dataclass
class PaymentResult:
    success: bool = False
    payment_id: str | None = None
    new_balance: Decimal | None = None
    previous_balance: Decimal | None = None
    invoice_status: PaymentStatus | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class PayAllResult:
    success: bool = False
    payment_ids: list[str] = field(default_factory=list)
    invoices_touched: list[str] = field(default_factory=list)
    advance_amount: Decimal = ZERO  # overpayment kept as credit
    new_balance: Decimal | None = None
    previous_balance: Decimal | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class SubmissionResult:
    success: bool = False
    submission_id: str | None = None
    invoice_id: str | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class PaymentHistoryResult:
    success: bool = False
    payments: list[Payment] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SubscriptionPaymentSummary:
    subscription_id: str
    plan_name: str
    balance: Decimal
    total_paid: Decimal
    total_invoiced: Decimal


@dataclass
class CustomerPaymentSummary:
    success: bool = False
    total_paid: Decimal = ZERO
    total_invoiced: Decimal = ZERO
    current_balance: Decimal = ZERO
    subscriptions: list[SubscriptionPaymentSummary] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class PaymentService(BillingService):
    """Record payments and keep balances and invoice statuses in step."""

    # Single payments ---------------------------------------------------

    def _allocation_target(self, subscription_id: str, invoice_id: str | None) -> Invoice | None:
        if invoice_id is not None:
            invoice = self.store.get_invoice(invoice_id)
            if invoice.subscription_id != subscription_id:
                raise BillingValidationError(
                    f"Invoice {invoice_id} does not belong to subscription {subscription_id}"
                )
            return invoice

        open_invoices = [
            inv
            for inv in self.store.list_invoices(subscription_ids=[subscription_id])
            if inv.payment_status != PaymentStatus.PAID
        ]
        return open_invoices[-1] if open_invoices else None

    def _record_payment(
        self,
        subscription: Subscription,
        amount: Decimal,
        mode: PaymentMode,
        settlement_date: date,
        notes: str | None,
        invoice: Invoice | None,
    ) -> tuple[Payment, Decimal, PaymentStatus | None]:
        """Ledger row, balance and invoice update (caller holds the transaction)."""
        payment = Payment(
            payment_id=new_id(),
            subscription_id=subscription.subscription_id,
            settlement_date=settlement_date,
            amount=amount,
            mode=PaymentMode(mode),
            invoice_id=invoice.invoice_id if invoice else None,
            notes=notes,
        )
        self.store.add_payment(payment)

        new_balance = calculate_new_balance(subscription.balance, amount)
        self.store.update_subscription(
            subscription.subscription_id,
            expected_version=subscription.version,
            balance=new_balance,
        )

        status = None
        if invoice is not None:
            amount_paid = invoice.amount_paid + amount
            status = determine_payment_status(amount_paid, invoice.amount_due)
            self.store.update_invoice(
                invoice.invoice_id, payment_status=status, amount_paid=amount_paid
            )

        if new_balance <= 0:
            self._close_settled_invoices(subscription.subscription_id)
            if invoice is not None:
                status = self.store.get_invoice(invoice.invoice_id).payment_status
        return payment, new_balance, status

    def _close_settled_invoices(self, subscription_id: str) -> None:
        """Mark every open invoice Paid once the balance is settled."""
        for invoice in self.store.list_invoices(
            subscription_ids=[subscription_id], statuses=OPEN_STATUSES
        ):
            self.store.update_invoice(invoice.invoice_id, payment_status=PaymentStatus.PAID)
            logger.info(
                "Invoice %s closed: balance of %s settled",
                invoice.invoice_id,
                subscription_id,
                extra={
                    "extra": {"subscription_id": subscription_id, "invoice_id": invoice.invoice_id}
                },
            )

    def _queue_receipt(
        self,
        queue: NotificationQueue,
        subscription: Subscription,
        amount: Decimal,
        new_balance: Decimal,
    ) -> None:
        customer = self.store.get_customer(subscription.customer_id)
        self._notify(
            queue,
            customer,
            subscription,
            "payment_received",
            templates.payment_received(customer.name, amount, new_balance, self.signature),
        )

    def apply_payment(
        self,
        subscription_id: str,
        amount: Decimal,
        mode: PaymentMode | str,
        settlement_date: date,
        notes: str | None = None,
        invoice_id: str | None = None,
        send_notification: bool = False,
    ) -> PaymentResult:
        """Record a payment and lower the balance by its amount.

        Parameters
        ----------
        subscription_id : str
            Paying subscription.
        amount : Decimal
            Amount received; must be positive.
        mode : PaymentMode | str
            Cash, E-Wallet or Referral Credit.
        settlement_date : date
            Date the money was received.
        notes : str | None
            Free-form note stored on the payment.
        invoice_id : str | None
            Invoice to allocate to. Defaults to the most recent invoice
            that is not yet Paid.
        send_notification : bool
            Send a payment receipt after the write commits.

        Returns
        -------
        PaymentResult
            Ledger id, balances before and after, and the allocated
            invoice's new status (None when nothing was open).
        """
        amount = Decimal(amount)
        if amount <= 0:
            return PaymentResult(errors=["Payment amount must be greater than zero"])

        amount = to_money(amount)
        queue = self._new_queue()

        try:
            with self.store.transaction():
                subscription = self.store.get_subscription(subscription_id)
                invoice = self._allocation_target(subscription_id, invoice_id)
                payment, new_balance, status = self._record_payment(
                    subscription, amount, mode, settlement_date, notes, invoice
                )
                if send_notification:
                    self._queue_receipt(queue, subscription, amount, new_balance)
        except BillingValidationError as exc:
            return PaymentResult(errors=[str(exc)])
        except BillingError as exc:
            logger.error(
                "Payment for %s failed: %s",
                subscription_id,
                exc,
                extra={"extra": {"subscription_id": subscription_id}},
            )
            return PaymentResult(errors=[f"Failed to record payment: {exc}"])

        queue.dispatch()
        logger.info(
            "Payment %s of %s applied to %s: balance %s -> %s",
            payment.payment_id,
            amount,
            subscription_id,
            subscription.balance,
            new_balance,
            extra={
                "extra": {"subscription_id": subscription_id, "payment_id": payment.payment_id}
            },
        )
        return PaymentResult(
            success=True,
            payment_id=payment.payment_id,
            new_balance=new_balance,
            previous_balance=subscription.balance,
            invoice_status=status,
        )

    def pay_all(
        self,
        subscription_id: str,
        amount: Decimal,
        mode: PaymentMode | str,
        settlement_date: date,
        notes: str | None = None,
        send_notification: bool = False,
    ) -> PayAllResult:
        """Spread one payment over open invoices, oldest due date first.

        One ledger row is written per invoice touched. Anything left over
        is recorded as a single unallocated advance payment, so the ledger
        always sums to the balance change.
        """
        amount = Decimal(amount)
        if amount <= 0:
            return PayAllResult(errors=["Payment amount must be greater than zero"])

        amount = to_money(amount)
        label = notes or "Full Settlement"
        result = PayAllResult()
        queue = self._new_queue()

        try:
            with self.store.transaction():
                subscription = self.store.get_subscription(subscription_id)
                result.previous_balance = subscription.balance
                open_invoices = [
                    inv
                    for inv in self.store.list_invoices(subscription_ids=[subscription_id])
                    if inv.payment_status != PaymentStatus.PAID
                ]

                remaining = amount
                for invoice in open_invoices:
                    if remaining <= 0:
                        break
                    # An earlier portion may have settled the balance and closed it
                    invoice = self.store.get_invoice(invoice.invoice_id)
                    if invoice.payment_status == PaymentStatus.PAID:
                        continue
                    portion = min(remaining, invoice.outstanding)
                    if portion <= 0:
                        continue
                    payment, _, _ = self._record_payment(
                        subscription,
                        portion,
                        mode,
                        settlement_date,
                        f"Pay All - {label} ({invoice.from_date} to {invoice.to_date})",
                        invoice,
                    )
                    subscription = self.store.get_subscription(subscription_id)
                    result.payment_ids.append(payment.payment_id)
                    result.invoices_touched.append(invoice.invoice_id)
                    remaining -= portion

                if remaining > 0:
                    payment, _, _ = self._record_payment(
                        subscription,
                        remaining,
                        mode,
                        settlement_date,
                        f"Pay All - {label} (advance payment)",
                        None,
                    )
                    result.payment_ids.append(payment.payment_id)
                    result.advance_amount = remaining

                result.new_balance = self.store.get_subscription(subscription_id).balance
                if send_notification:
                    self._queue_receipt(queue, subscription, amount, result.new_balance)
        except BillingError as exc:
            logger.error("Pay-all for %s failed: %s", subscription_id, exc)
            return PayAllResult(errors=[f"Failed to record payment: {exc}"])

        queue.dispatch()
        result.success = True
        return result

    # E-wallet submissions ----------------------------------------------

    def submit_manual_payment(
        self,
        subscription_id: str,
        amount: Decimal,
        wallet_provider: str,
        reference_number: str,
        submitted_on: date | None = None,
        proof_url: str | None = None,
    ) -> SubmissionResult:
        """Record a customer-reported e-wallet payment for admin review.

        The oldest open invoice (or, failing that, the latest invoice) is
        flagged Pending Verification. The balance is untouched until the
        submission is approved.
        """
        amount = Decimal(amount)
        if amount <= 0:
            return SubmissionResult(errors=["Payment amount must be greater than zero"])
        if not reference_number.strip():
            return SubmissionResult(errors=["Reference number is required"])

        try:
            with self.store.transaction():
                self.store.get_subscription(subscription_id)
                invoices = self.store.list_invoices(subscription_ids=[subscription_id])
                if not invoices:
                    raise BillingValidationError("No invoice found for this subscription")

                open_invoices = [i for i in invoices if i.payment_status != PaymentStatus.PAID]
                target = open_invoices[0] if open_invoices else invoices[-1]

                submission = PaymentSubmission(
                    submission_id=new_id(),
                    subscription_id=subscription_id,
                    invoice_id=target.invoice_id,
                    amount=to_money(amount),
                    wallet_provider=wallet_provider,
                    reference_number=reference_number.strip(),
                    submitted_on=submitted_on or date.today(),
                    proof_url=proof_url,
                )
                self.store.add_submission(submission)
                self.store.update_invoice(
                    target.invoice_id, payment_status=PaymentStatus.PENDING_VERIFICATION
                )
        except BillingValidationError as exc:
            return SubmissionResult(errors=[str(exc)])
        except BillingError as exc:
            logger.error("Payment submission for %s failed: %s", subscription_id, exc)
            return SubmissionResult(errors=[f"Failed to submit payment: {exc}"])

        logger.info(
            "E-wallet payment %s submitted for invoice %s", reference_number, target.invoice_id
        )
        return SubmissionResult(
            success=True,
            submission_id=submission.submission_id,
            invoice_id=target.invoice_id,
        )

    def _pending_submission(self, submission_id: str) -> PaymentSubmission:
        submission = self.store.get_submission(submission_id)
        if submission.status != SubmissionStatus.PENDING:
            raise BillingValidationError(
                f"Submission {submission_id} is already {submission.status.value.lower()}"
            )
        return submission

    def approve_submission(
        self,
        submission_id: str,
        approved_amount: Decimal | None = None,
        admin_notes: str | None = None,
        settlement_date: date | None = None,
        send_notification: bool = True,
    ) -> PaymentResult:
        """Turn a verified submission into a ledger payment on its invoice."""
        queue = self._new_queue()

        try:
            with self.store.transaction():
                submission = self._pending_submission(submission_id)
                amount = to_money(
                    Decimal(approved_amount) if approved_amount is not None else submission.amount
                )
                if amount <= 0:
                    raise BillingValidationError("Approved amount must be greater than zero")

                subscription = self.store.get_subscription(submission.subscription_id)
                invoice = self.store.get_invoice(submission.invoice_id)
                payment, new_balance, status = self._record_payment(
                    subscription,
                    amount,
                    PaymentMode.E_WALLET,
                    settlement_date or submission.submitted_on,
                    f"{submission.wallet_provider} ref {submission.reference_number} - Verified",
                    invoice,
                )
                self.store.save_submission(
                    replace(
                        submission,
                        status=SubmissionStatus.APPROVED,
                        approved_amount=amount,
                        payment_id=payment.payment_id,
                        admin_notes=admin_notes,
                    )
                )
                if send_notification:
                    self._queue_receipt(queue, subscription, amount, new_balance)
        except BillingValidationError as exc:
            return PaymentResult(errors=[str(exc)])
        except BillingError as exc:
            logger.error("Approving submission %s failed: %s", submission_id, exc)
            return PaymentResult(errors=[f"Failed to approve submission: {exc}"])

        queue.dispatch()
        return PaymentResult(
            success=True,
            payment_id=payment.payment_id,
            new_balance=new_balance,
            previous_balance=subscription.balance,
            invoice_status=status,
        )

    def reject_submission(self, submission_id: str, admin_notes: str | None = None) -> SubmissionResult:
        """Reject a submission and restore its invoice's payment status."""
        try:
            with self.store.transaction():
                submission = self._pending_submission(submission_id)
                self.store.save_submission(
                    replace(submission, status=SubmissionStatus.REJECTED, admin_notes=admin_notes)
                )

                still_pending = any(
                    other.invoice_id == submission.invoice_id
                    and other.submission_id != submission_id
                    and other.status == SubmissionStatus.PENDING
                    for other in self.store.list_submissions(subscription_id=submission.subscription_id)
                )
                if not still_pending:
                    invoice = self.store.get_invoice(submission.invoice_id)
                    self.store.update_invoice(
                        invoice.invoice_id,
                        payment_status=determine_payment_status(
                            invoice.amount_paid, invoice.amount_due
                        ),
                    )
        except BillingValidationError as exc:
            return SubmissionResult(errors=[str(exc)])
        except BillingError as exc:
            logger.error("Rejecting submission %s failed: %s", submission_id, exc)
            return SubmissionResult(errors=[f"Failed to reject submission: {exc}"])

        return SubmissionResult(
            success=True,
            submission_id=submission_id,
            invoice_id=submission.invoice_id,
        )

    # Reporting ---------------------------------------------------------

    def get_payment_history(self, subscription_id: str) -> PaymentHistoryResult:
        """Payments for a subscription, most recent settlement first."""
        try:
            self.store.get_subscription(subscription_id)
            payments = self.store.list_payments(subscription_id=subscription_id)
        except BillingError as exc:
            return PaymentHistoryResult(errors=[str(exc)])

        # Stable sort keeps ledger order within a settlement date
        payments = sorted(reversed(payments), key=lambda p: p.settlement_date, reverse=True)
        return PaymentHistoryResult(success=True, payments=payments)

    def get_customer_payment_summary(self, customer_id: str) -> CustomerPaymentSummary:
        """Paid, invoiced and balance totals across a customer's subscriptions."""
        summary = CustomerPaymentSummary()
        try:
            self.store.get_customer(customer_id)
            for subscription in self.store.list_subscriptions(customer_id=customer_id):
                sid = subscription.subscription_id
                plan = self.store.get_plan(subscription.plan_id)
                paid = sum((p.amount for p in self.store.list_payments(subscription_id=sid)), ZERO)
                invoiced = sum(
                    (i.amount_due for i in self.store.list_invoices(subscription_ids=[sid])), ZERO
                )
                summary.subscriptions.append(
                    SubscriptionPaymentSummary(
                        subscription_id=sid,
                        plan_name=plan.name,
                        balance=subscription.balance,
                        total_paid=paid,
                        total_invoiced=invoiced,
                    )
                )
        except BillingError as exc:
            summary.errors.append(str(exc))
            summary.subscriptions.clear()
            return summary

        summary.total_paid = sum((s.total_paid for s in summary.subscriptions), ZERO)
        summary.total_invoiced = sum((s.total_invoiced for s in summary.subscriptions), ZERO)
        summary.current_balance = sum((s.balance for s in summary.subscriptions), ZERO)
        summary.success = True
        return summary
