"""Invoice model for billing domain."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from isp_billing.models.billing.enums import PaymentStatus


@dataclass
class Invoice:
    """Billing document covering ``[from_date, to_date]``.

    ``amount_due`` is cumulative: a periodic invoice carries forward any
    outstanding balance at the time it was generated.
    """

    invoice_id: str
    subscription_id: str
    from_date: date
    to_date: date
    due_date: date
    amount_due: Decimal
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    amount_paid: Decimal = Decimal("0")
    is_prorated: bool = False
    prorated_days: int = 0

    # Breakdown of how amount_due was reached (periodic invoices only)
    original_amount: Decimal | None = None
    discount_applied: Decimal | None = None
    credits_applied: Decimal | None = None

    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def outstanding(self) -> Decimal:
        """Amount still unpaid on this invoice."""
        return max(Decimal("0"), self.amount_due - self.amount_paid)
