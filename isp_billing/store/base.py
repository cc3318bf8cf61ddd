"""Storage interface consumed by the billing engine."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date
from decimal import Decimal
from typing import Iterable

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


def new_id() -> str:
    """Return a fresh opaque record id."""
    return uuid.uuid4().hex


class BillingStore(ABC):
    """CRUD over billing records.

    Lookups return detached copies; all writes go through the explicit
    update methods so that a store can enforce its invariants (append-only
    payments, monotonic ``amount_paid``, optimistic subscription versions).
    Missing records raise ``EntityNotFoundError``.
    """

    # Master data
    @abstractmethod
    def add_customer(self, customer: Customer) -> None: ...

    @abstractmethod
    def get_customer(self, customer_id: str) -> Customer: ...

    @abstractmethod
    def add_business_unit(self, business_unit: BusinessUnit) -> None: ...

    @abstractmethod
    def get_business_unit(self, business_unit_id: str) -> BusinessUnit: ...

    @abstractmethod
    def list_business_units(self) -> list[BusinessUnit]: ...

    @abstractmethod
    def add_plan(self, plan: Plan) -> None: ...

    @abstractmethod
    def get_plan(self, plan_id: str) -> Plan: ...

    # Subscriptions
    @abstractmethod
    def add_subscription(self, subscription: Subscription) -> None: ...

    @abstractmethod
    def get_subscription(self, subscription_id: str) -> Subscription: ...

    @abstractmethod
    def list_subscriptions(
        self,
        business_unit_id: str | None = None,
        customer_id: str | None = None,
        active: bool | None = None,
    ) -> list[Subscription]: ...

    @abstractmethod
    def update_subscription(
        self,
        subscription_id: str,
        expected_version: int | None = None,
        *,
        balance: Decimal | None = None,
        plan_id: str | None = None,
        active: bool | None = None,
        referral_credit_applied: bool | None = None,
    ) -> Subscription: ...

    # Invoices
    @abstractmethod
    def add_invoices(self, invoices: Iterable[Invoice]) -> None: ...

    def add_invoice(self, invoice: Invoice) -> None:
        """Insert a single invoice."""
        self.add_invoices([invoice])

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> Invoice: ...

    @abstractmethod
    def list_invoices(
        self,
        subscription_ids: Iterable[str] | None = None,
        due_from: date | None = None,
        due_to: date | None = None,
        statuses: Iterable[PaymentStatus] | None = None,
    ) -> list[Invoice]: ...

    @abstractmethod
    def update_invoice(
        self,
        invoice_id: str,
        *,
        payment_status: PaymentStatus | None = None,
        amount_paid: Decimal | None = None,
    ) -> Invoice: ...

    # Payments (append-only)
    @abstractmethod
    def add_payment(self, payment: Payment) -> None: ...

    @abstractmethod
    def list_payments(
        self,
        subscription_id: str | None = None,
        invoice_id: str | None = None,
    ) -> list[Payment]: ...

    @abstractmethod
    def add_submission(self, submission: PaymentSubmission) -> None: ...

    @abstractmethod
    def get_submission(self, submission_id: str) -> PaymentSubmission: ...

    @abstractmethod
    def list_submissions(
        self,
        subscription_id: str | None = None,
        status: SubmissionStatus | None = None,
    ) -> list[PaymentSubmission]: ...

    @abstractmethod
    def save_submission(self, submission: PaymentSubmission) -> None: ...

    # Plan changes
    @abstractmethod
    def add_plan_change(self, plan_change: PlanChange) -> None: ...

    @abstractmethod
    def list_plan_changes(
        self,
        subscription_ids: Iterable[str] | None = None,
        processed: bool | None = None,
    ) -> list[PlanChange]: ...

    @abstractmethod
    def mark_plan_change_processed(self, plan_change_id: str) -> None: ...

    # Units of work
    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Group writes so they commit or roll back together."""
