"""Billing domain models."""

from isp_billing.models.billing.customer import BusinessUnit, Customer
from isp_billing.models.billing.enums import (
    BillingCycle,
    PaymentMode,
    PaymentStatus,
    PeriodType,
    SubmissionStatus,
)
from isp_billing.models.billing.invoice import Invoice
from isp_billing.models.billing.payment import Payment, PaymentSubmission
from isp_billing.models.billing.plan import Plan
from isp_billing.models.billing.plan_change import PlanChange
from isp_billing.models.billing.schedule import BillingDates, BillingProfile, TodaysTasks
from isp_billing.models.billing.subscription import Subscription

__all__ = [
    "BillingCycle",
    "BillingDates",
    "BillingProfile",
    "BusinessUnit",
    "Customer",
    "Invoice",
    "Payment",
    "PaymentMode",
    "PaymentStatus",
    "PaymentSubmission",
    "PeriodType",
    "Plan",
    "PlanChange",
    "Subscription",
    "SubmissionStatus",
    "TodaysTasks",
]
