"""Daily billing trigger.

Meant to be invoked once a day (e.g. from cron). Works out which profile
groups have work today in local billing time and runs generation,
reminders and warnings for the matching business units.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from isp_billing.engine.base import BillingService
from isp_billing.engine.invoicing import InvoiceService
from isp_billing.engine.schedule import to_local_time
from isp_billing.exceptions import BillingError
from isp_billing.models.billing import BusinessUnit

logger = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    business_unit: str
    sent: int = 0
    generated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ScheduledRunReport:
    run_at: datetime
    tasks_executed: list[str] = field(default_factory=list)
    invoice_generation: list[TaskOutcome] = field(default_factory=list)
    due_reminders: list[TaskOutcome] = field(default_factory=list)
    disconnection_warnings: list[TaskOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors and all(
            not outcome.errors
            for outcome in self.invoice_generation + self.due_reminders + self.disconnection_warnings
        )


class BillingScheduler(BillingService):
    """Run the day's billing tasks across business units."""

    def __init__(self, *args, invoices: InvoiceService | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.invoices = invoices or InvoiceService(
            self.store, self.config, self.gateway, self.resolver, self._sleep
        )

    def _units_for(self, key: str, units: list[BusinessUnit]) -> list[BusinessUnit]:
        return [bu for bu in units if self.resolver.resolve_key(bu.name) == key]

    def run_scheduled_tasks(self, now: datetime | None = None) -> ScheduledRunReport:
        """Execute everything due on the local day containing ``now``."""
        now = now or datetime.now().astimezone()
        local = to_local_time(now, self.config.timezone_offset_hours)
        today = local.date()
        report = ScheduledRunReport(run_at=local)

        tasks = self.resolver.todays_tasks(now, self.config.timezone_offset_hours)
        if tasks.is_empty:
            report.tasks_executed.append("No scheduled tasks for today")
            return report

        try:
            units = self.store.list_business_units()
        except BillingError as exc:
            report.errors.append(f"Failed to fetch business units: {exc}")
            return report

        def matched(key: str) -> list[BusinessUnit]:
            found = self._units_for(key, units)
            if not found:
                logger.warning("No business unit for billing group %r", key)
                report.errors.append(f"Business unit not found for type: {key}")
            return found

        for key in tasks.should_generate_invoices:
            for bu in matched(key):
                report.tasks_executed.append(f"Invoice Generation: {bu.name}")
                outcome = self.invoices.generate_invoices_for_business_unit(
                    bu.business_unit_id, local.year, local.month
                )
                report.invoice_generation.append(
                    TaskOutcome(
                        business_unit=bu.name,
                        sent=outcome.notifications_sent,
                        generated=outcome.generated,
                        skipped=outcome.skipped,
                        errors=outcome.errors,
                    )
                )

        for key in tasks.should_send_due_reminders:
            for bu in matched(key):
                report.tasks_executed.append(f"Due Date Reminder: {bu.name}")
                outcome = self.invoices.send_due_date_reminders(bu.business_unit_id, today)
                report.due_reminders.append(
                    TaskOutcome(business_unit=bu.name, sent=outcome.sent, errors=outcome.errors)
                )

        for key in tasks.should_send_disconnection_warnings:
            for bu in matched(key):
                report.tasks_executed.append(f"Disconnection Warning: {bu.name}")
                outcome = self.invoices.send_disconnection_warnings(bu.business_unit_id, today)
                report.disconnection_warnings.append(
                    TaskOutcome(business_unit=bu.name, sent=outcome.sent, errors=outcome.errors)
                )

        logger.info("Scheduled run for %s: %s", today, ", ".join(report.tasks_executed) or "none")
        return report


def run_scheduled_tasks(scheduler: BillingScheduler, now: datetime | None = None) -> ScheduledRunReport:
    """Convenience wrapper for cron entry points."""
    return scheduler.run_scheduled_tasks(now)
