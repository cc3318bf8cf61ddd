"""Plan change model for billing domain."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal


@dataclass
class PlanChange:
    """Mid-cycle plan swap awaiting its new-plan invoice."""

    plan_change_id: str
    subscription_id: str
    old_plan_id: str
    new_plan_id: str
    old_monthly_fee: Decimal
    new_monthly_fee: Decimal
    change_date: date
    prorated_amount: Decimal  # positive = charge, negative = credit
    prorated_days: int
    billing_period_start: date
    billing_period_end: date
    invoice_id: str | None = None
    processed: bool = False
    created_at: datetime | None = None
