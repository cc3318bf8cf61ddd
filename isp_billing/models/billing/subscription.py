"""Subscription model for billing domain."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from isp_billing.models.billing.enums import BillingCycle


@dataclass
class Subscription:
    """A customer's service on one plan in one business unit.

    ``balance`` is positive when money is owed and negative when the
    customer holds a credit.
    """

    subscription_id: str
    customer_id: str
    plan_id: str
    business_unit_id: str
    date_installed: date | None
    billing_cycle: BillingCycle = BillingCycle.MID_MONTH
    balance: Decimal = Decimal("0")
    active: bool = True
    referral_credit_applied: bool = False
    referrer_id: str | None = None  # customer who referred this subscriber
    version: int = 0  # bumped on every write, for optimistic locking
    created_at: datetime | None = None
    updated_at: datetime | None = None
