"""Billing engine: calendar, proration and the billing services."""

from isp_billing.engine.invoicing import GenerateInvoiceResult, InvoiceService
from isp_billing.engine.payments import (
    PaymentResult,
    PaymentService,
    calculate_new_balance,
    determine_payment_status,
)
from isp_billing.engine.plan_change import (
    PlanChangePreview,
    PlanChangeResult,
    PlanChangeService,
    preview_plan_change,
)
from isp_billing.engine.proration import calculate_prorated_amount, days_between, needs_prorating
from isp_billing.engine.schedule import ScheduleResolver, get_todays_tasks
from isp_billing.engine.scheduler import BillingScheduler, ScheduledRunReport, run_scheduled_tasks

__all__ = [
    "BillingScheduler",
    "GenerateInvoiceResult",
    "InvoiceService",
    "PaymentResult",
    "PaymentService",
    "PlanChangePreview",
    "PlanChangeResult",
    "PlanChangeService",
    "ScheduleResolver",
    "ScheduledRunReport",
    "calculate_new_balance",
    "calculate_prorated_amount",
    "days_between",
    "determine_payment_status",
    "get_todays_tasks",
    "needs_prorating",
    "preview_plan_change",
    "run_scheduled_tasks",
]
