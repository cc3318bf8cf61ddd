"""In-memory billing store with referential integrity."""

from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Iterator

from isp_billing.exceptions import (
    ConcurrentModificationError,
    EntityNotFoundError,
    PersistenceError,
    ReferentialIntegrityError,
)
from isp_billing.models.billing import (
    BusinessUnit,
    Customer,
    Invoice,
    Payment,
    PaymentStatus,
    PaymentSubmission,
    Plan,
    PlanChange,
    SubmissionStatus,
    Subscription,
)
from isp_billing.store.base import BillingStore

logger = logging.getLogger(__name__)


@dataclass
class InMemoryBillingStore(BillingStore):
    """In-memory store for billing entities with relationship tracking."""

    # Master data
    customers: dict[str, Customer] = field(default_factory=dict)
    business_units: dict[str, BusinessUnit] = field(default_factory=dict)
    plans: dict[str, Plan] = field(default_factory=dict)
    subscriptions: dict[str, Subscription] = field(default_factory=dict)

    # Billing records
    invoices: dict[str, Invoice] = field(default_factory=dict)
    payments: list[Payment] = field(default_factory=list)
    submissions: dict[str, PaymentSubmission] = field(default_factory=dict)
    plan_changes: dict[str, PlanChange] = field(default_factory=dict)

    # Relationship indexes
    _customer_subscriptions: dict[str, list[str]] = field(default_factory=dict)
    _subscription_invoices: dict[str, list[str]] = field(default_factory=dict)
    _subscription_payments: dict[str, list[int]] = field(default_factory=dict)

    _in_transaction: bool = False

    # Master data -------------------------------------------------------

    def add_customer(self, customer: Customer) -> None:
        """Add a customer to the store."""
        self.customers[customer.customer_id] = replace(customer)
        self._customer_subscriptions.setdefault(customer.customer_id, [])

    def get_customer(self, customer_id: str) -> Customer:
        """Get a customer by id."""
        return replace(self._require(self.customers, customer_id, "Customer"))

    def add_business_unit(self, business_unit: BusinessUnit) -> None:
        """Add a business unit to the store."""
        self.business_units[business_unit.business_unit_id] = replace(business_unit)

    def get_business_unit(self, business_unit_id: str) -> BusinessUnit:
        """Get a business unit by id."""
        return replace(self._require(self.business_units, business_unit_id, "Business unit"))

    def list_business_units(self) -> list[BusinessUnit]:
        """Get all business units ordered by name."""
        return sorted(
            (replace(bu) for bu in self.business_units.values()),
            key=lambda bu: bu.name,
        )

    def add_plan(self, plan: Plan) -> None:
        """Add a plan to the store."""
        self.plans[plan.plan_id] = replace(plan)

    def get_plan(self, plan_id: str) -> Plan:
        """Get a plan by id."""
        return replace(self._require(self.plans, plan_id, "Plan"))

    # Subscriptions ----------------------------------------------------

    def add_subscription(self, subscription: Subscription) -> None:
        """Add a subscription to the store."""
        if subscription.customer_id not in self.customers:
            raise ReferentialIntegrityError(f"Customer {subscription.customer_id} not found")

        if subscription.plan_id not in self.plans:
            raise ReferentialIntegrityError(f"Plan {subscription.plan_id} not found")

        if subscription.business_unit_id not in self.business_units:
            raise ReferentialIntegrityError(
                f"Business unit {subscription.business_unit_id} not found"
            )

        self.subscriptions[subscription.subscription_id] = replace(
            subscription, created_at=subscription.created_at or datetime.now()
        )
        self._customer_subscriptions[subscription.customer_id].append(
            subscription.subscription_id
        )
        self._subscription_invoices.setdefault(subscription.subscription_id, [])
        self._subscription_payments.setdefault(subscription.subscription_id, [])

    def get_subscription(self, subscription_id: str) -> Subscription:
        """Get a subscription by id."""
        return replace(self._require(self.subscriptions, subscription_id, "Subscription"))

    def list_subscriptions(
        self,
        business_unit_id: str | None = None,
        customer_id: str | None = None,
        active: bool | None = None,
    ) -> list[Subscription]:
        """List subscriptions matching every given filter."""
        if customer_id is not None:
            candidates = [
                self.subscriptions[sid]
                for sid in self._customer_subscriptions.get(customer_id, [])
            ]
        else:
            candidates = list(self.subscriptions.values())

        return [
            replace(sub)
            for sub in candidates
            if (business_unit_id is None or sub.business_unit_id == business_unit_id)
            and (active is None or sub.active == active)
        ]

    def update_subscription(
        self,
        subscription_id: str,
        expected_version: int | None = None,
        *,
        balance: Decimal | None = None,
        plan_id: str | None = None,
        active: bool | None = None,
        referral_credit_applied: bool | None = None,
    ) -> Subscription:
        """Apply a single-row update and bump the subscription version."""
        current = self._require(self.subscriptions, subscription_id, "Subscription")

        if expected_version is not None and current.version != expected_version:
            raise ConcurrentModificationError(
                f"Subscription {subscription_id} changed "
                f"(expected version {expected_version}, found {current.version})"
            )

        if plan_id is not None and plan_id not in self.plans:
            raise ReferentialIntegrityError(f"Plan {plan_id} not found")

        if referral_credit_applied is False and current.referral_credit_applied:
            raise PersistenceError(
                f"Referral credit on subscription {subscription_id} cannot be reversed"
            )

        changes: dict = {}
        if balance is not None:
            changes["balance"] = balance
        if plan_id is not None:
            changes["plan_id"] = plan_id
        if active is not None:
            changes["active"] = active
        if referral_credit_applied is not None:
            changes["referral_credit_applied"] = referral_credit_applied

        updated = replace(
            current, **changes, version=current.version + 1, updated_at=datetime.now()
        )
        self.subscriptions[subscription_id] = updated
        return replace(updated)

    # Invoices ---------------------------------------------------------

    def add_invoices(self, invoices: Iterable[Invoice]) -> None:
        """Insert invoices, all-or-nothing."""
        batch = list(invoices)
        for invoice in batch:
            if invoice.subscription_id not in self.subscriptions:
                raise ReferentialIntegrityError(
                    f"Subscription {invoice.subscription_id} not found"
                )
            if invoice.invoice_id in self.invoices:
                raise PersistenceError(f"Invoice {invoice.invoice_id} already exists")
            if invoice.amount_due < 0:
                raise PersistenceError(f"Invoice {invoice.invoice_id} has a negative amount due")

        for invoice in batch:
            self.invoices[invoice.invoice_id] = replace(
                invoice, created_at=invoice.created_at or datetime.now()
            )
            self._subscription_invoices[invoice.subscription_id].append(invoice.invoice_id)

    def get_invoice(self, invoice_id: str) -> Invoice:
        """Get an invoice by id."""
        return replace(self._require(self.invoices, invoice_id, "Invoice"))

    def list_invoices(
        self,
        subscription_ids: Iterable[str] | None = None,
        due_from: date | None = None,
        due_to: date | None = None,
        statuses: Iterable[PaymentStatus] | None = None,
    ) -> list[Invoice]:
        """List invoices ordered by due date, oldest first."""
        if subscription_ids is not None:
            candidates = [
                self.invoices[iid]
                for sid in subscription_ids
                for iid in self._subscription_invoices.get(sid, [])
            ]
        else:
            candidates = list(self.invoices.values())

        status_set = set(statuses) if statuses is not None else None
        matches = [
            replace(inv)
            for inv in candidates
            if (due_from is None or inv.due_date >= due_from)
            and (due_to is None or inv.due_date <= due_to)
            and (status_set is None or inv.payment_status in status_set)
        ]
        matches.sort(key=lambda inv: (inv.due_date, inv.created_at or datetime.min))
        return matches

    def update_invoice(
        self,
        invoice_id: str,
        *,
        payment_status: PaymentStatus | None = None,
        amount_paid: Decimal | None = None,
    ) -> Invoice:
        """Update the payment state of an invoice."""
        current = self._require(self.invoices, invoice_id, "Invoice")

        if amount_paid is not None and amount_paid < current.amount_paid:
            raise PersistenceError(
                f"amount_paid on invoice {invoice_id} cannot decrease "
                f"({current.amount_paid} -> {amount_paid})"
            )

        changes: dict = {}
        if payment_status is not None:
            changes["payment_status"] = payment_status
        if amount_paid is not None:
            changes["amount_paid"] = amount_paid

        updated = replace(current, **changes, updated_at=datetime.now())
        self.invoices[invoice_id] = updated
        return replace(updated)

    # Payments ---------------------------------------------------------

    def add_payment(self, payment: Payment) -> None:
        """Append a payment to the ledger."""
        if payment.subscription_id not in self.subscriptions:
            raise ReferentialIntegrityError(f"Subscription {payment.subscription_id} not found")

        if payment.invoice_id is not None and payment.invoice_id not in self.invoices:
            raise ReferentialIntegrityError(f"Invoice {payment.invoice_id} not found")

        idx = len(self.payments)
        self.payments.append(replace(payment, created_at=payment.created_at or datetime.now()))
        self._subscription_payments[payment.subscription_id].append(idx)

    def list_payments(
        self,
        subscription_id: str | None = None,
        invoice_id: str | None = None,
    ) -> list[Payment]:
        """List payments in ledger order."""
        if subscription_id is not None:
            indices = self._subscription_payments.get(subscription_id, [])
            candidates = [self.payments[i] for i in indices]
        else:
            candidates = list(self.payments)

        return [p for p in candidates if invoice_id is None or p.invoice_id == invoice_id]

    def add_submission(self, submission: PaymentSubmission) -> None:
        """Add a pending e-wallet submission."""
        if submission.invoice_id not in self.invoices:
            raise ReferentialIntegrityError(f"Invoice {submission.invoice_id} not found")

        if submission.created_at is None:
            submission.created_at = datetime.now()
        self.submissions[submission.submission_id] = submission

    def get_submission(self, submission_id: str) -> PaymentSubmission:
        """Get a payment submission by id."""
        return replace(self._require(self.submissions, submission_id, "Payment submission"))

    def list_submissions(
        self,
        subscription_id: str | None = None,
        status: SubmissionStatus | None = None,
    ) -> list[PaymentSubmission]:
        """List submissions in submission order."""
        return [
            replace(s)
            for s in self.submissions.values()
            if (subscription_id is None or s.subscription_id == subscription_id)
            and (status is None or s.status == status)
        ]

    def save_submission(self, submission: PaymentSubmission) -> None:
        """Persist a reviewed submission."""
        self._require(self.submissions, submission.submission_id, "Payment submission")
        self.submissions[submission.submission_id] = replace(
            submission, updated_at=datetime.now()
        )

    # Plan changes -----------------------------------------------------

    def add_plan_change(self, plan_change: PlanChange) -> None:
        """Record a plan change."""
        if plan_change.subscription_id not in self.subscriptions:
            raise ReferentialIntegrityError(
                f"Subscription {plan_change.subscription_id} not found"
            )

        self.plan_changes[plan_change.plan_change_id] = replace(
            plan_change, created_at=plan_change.created_at or datetime.now()
        )

    def list_plan_changes(
        self,
        subscription_ids: Iterable[str] | None = None,
        processed: bool | None = None,
    ) -> list[PlanChange]:
        """List plan changes ordered by change date."""
        id_set = set(subscription_ids) if subscription_ids is not None else None
        matches = [
            replace(pc)
            for pc in self.plan_changes.values()
            if (id_set is None or pc.subscription_id in id_set)
            and (processed is None or pc.processed == processed)
        ]
        matches.sort(key=lambda pc: pc.change_date)
        return matches

    def mark_plan_change_processed(self, plan_change_id: str) -> None:
        """Flag a plan change as realised."""
        current = self._require(self.plan_changes, plan_change_id, "Plan change")
        self.plan_changes[plan_change_id] = replace(current, processed=True)

    # Units of work ----------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Snapshot state and restore it if the block raises.

        Nested calls join the outermost transaction.
        """
        if self._in_transaction:
            yield
            return

        snapshot = self._snapshot()
        self._in_transaction = True
        try:
            yield
        except Exception:
            self._restore(snapshot)
            logger.warning("Transaction rolled back")
            raise
        finally:
            self._in_transaction = False

    def summary(self) -> dict[str, int]:
        """Return summary counts of all entities."""
        return {
            "customers": len(self.customers),
            "business_units": len(self.business_units),
            "plans": len(self.plans),
            "subscriptions": len(self.subscriptions),
            "invoices": len(self.invoices),
            "payments": len(self.payments),
            "submissions": len(self.submissions),
            "plan_changes": len(self.plan_changes),
        }

    # Internals --------------------------------------------------------

    _MUTABLE_STATE = (
        "subscriptions",
        "invoices",
        "payments",
        "submissions",
        "plan_changes",
        "_customer_subscriptions",
        "_subscription_invoices",
        "_subscription_payments",
    )

    def _snapshot(self) -> dict:
        return {name: copy.deepcopy(getattr(self, name)) for name in self._MUTABLE_STATE}

    def _restore(self, snapshot: dict) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    @staticmethod
    def _require(table: dict, key: str, label: str):
        try:
            return table[key]
        except KeyError:
            raise EntityNotFoundError(f"{label} {key} not found") from None
