"""Payment models for billing domain."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from isp_billing.models.billing.enums import PaymentMode, SubmissionStatus


@dataclass(frozen=True)
class Payment:
    """Ledger entry for money received. Never mutated once stored."""

    payment_id: str
    subscription_id: str
    settlement_date: date
    amount: Decimal
    mode: PaymentMode
    invoice_id: str | None = None
    notes: str | None = None
    created_at: datetime | None = None


@dataclass
class PaymentSubmission:
    """Customer-submitted e-wallet payment awaiting admin verification."""

    submission_id: str
    subscription_id: str
    invoice_id: str
    amount: Decimal
    wallet_provider: str
    reference_number: str
    submitted_on: date
    status: SubmissionStatus = SubmissionStatus.PENDING
    proof_url: str | None = None
    approved_amount: Decimal | None = None
    payment_id: str | None = None  # ledger entry created on approval
    admin_notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
