"""Tests for the daily billing trigger."""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from isp_billing.engine import BillingScheduler, run_scheduled_tasks
from isp_billing.exceptions import PersistenceError
from isp_billing.models.billing import BillingCycle, BusinessUnit, Invoice, PaymentStatus


@pytest.fixture
def scheduler(store, gateway, sleeps) -> BillingScheduler:
    return BillingScheduler(store, gateway=gateway, sleep=sleeps.append)


@pytest.fixture
def with_extension(store):
    store.add_business_unit(BusinessUnit(business_unit_id="bu-extension", name="Extension"))
    return store


def utc(year: int, month: int, day: int, hour: int = 1) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


class TestScheduledRun:
    """Task dispatch by local day of month."""

    def test_quiet_day(self, scheduler, gateway) -> None:
        report = scheduler.run_scheduled_tasks(utc(2024, 3, 3))

        assert report.tasks_executed == ["No scheduled tasks for today"]
        assert report.success
        assert gateway.sent == []

    def test_mid_month_generation_day(
        self, store, with_extension, add_subscription, scheduler, gateway
    ) -> None:
        sid = add_subscription()

        report = scheduler.run_scheduled_tasks(utc(2024, 3, 10))

        assert report.success
        assert report.tasks_executed == [
            "Invoice Generation: Bulihan",
            "Invoice Generation: Extension",
        ]
        bulihan = report.invoice_generation[0]
        assert bulihan.generated == 1
        assert bulihan.sent == 1
        [invoice] = store.list_invoices(subscription_ids=[sid])
        assert invoice.due_date == date(2024, 3, 15)
        assert gateway.kinds() == ["invoice_generated"]

    def test_full_month_generation_day(self, store, add_subscription, scheduler) -> None:
        sid = add_subscription(
            business_unit_id="bu-malanggam", billing_cycle=BillingCycle.FULL_MONTH
        )

        report = scheduler.run_scheduled_tasks(utc(2024, 3, 25))

        assert report.tasks_executed == ["Invoice Generation: Malanggam"]
        [invoice] = store.list_invoices(subscription_ids=[sid])
        assert invoice.from_date == date(2024, 3, 1)
        assert invoice.to_date == date(2024, 3, 31)

    def test_missing_business_unit_reported(self, add_subscription, scheduler) -> None:
        add_subscription()

        report = scheduler.run_scheduled_tasks(utc(2024, 3, 10))

        assert not report.success
        assert report.errors == ["Business unit not found for type: extension"]
        assert [o.business_unit for o in report.invoice_generation] == ["Bulihan"]

    def test_local_day_used_for_naive_utc(self, with_extension, scheduler) -> None:
        """17:00 UTC on the 9th is already the 10th in local billing time."""
        report = scheduler.run_scheduled_tasks(datetime(2024, 3, 9, 17, 0))

        assert report.run_at.date() == date(2024, 3, 10)
        assert "Invoice Generation: Bulihan" in report.tasks_executed

    def test_due_reminders(self, store, with_extension, add_subscription, scheduler, gateway) -> None:
        sid = add_subscription()
        store.add_invoice(
            Invoice(
                invoice_id="inv-1",
                subscription_id=sid,
                from_date=date(2024, 2, 15),
                to_date=date(2024, 3, 15),
                due_date=date(2024, 3, 15),
                amount_due=Decimal("1000"),
            )
        )

        report = scheduler.run_scheduled_tasks(utc(2024, 3, 15))

        assert report.tasks_executed == [
            "Due Date Reminder: Bulihan",
            "Due Date Reminder: Extension",
        ]
        assert report.due_reminders[0].sent == 1
        assert gateway.kinds() == ["due_reminder"]

    def test_disconnection_warnings(
        self, store, with_extension, add_subscription, scheduler, gateway
    ) -> None:
        sid = add_subscription(balance=Decimal("600"))
        store.add_invoice(
            Invoice(
                invoice_id="inv-1",
                subscription_id=sid,
                from_date=date(2024, 2, 15),
                to_date=date(2024, 3, 15),
                due_date=date(2024, 3, 15),
                amount_due=Decimal("1000"),
                payment_status=PaymentStatus.PARTIALLY_PAID,
            )
        )

        report = scheduler.run_scheduled_tasks(utc(2024, 3, 20))

        assert report.tasks_executed[0] == "Disconnection Warning: Bulihan"
        assert report.disconnection_warnings[0].sent == 1
        assert gateway.kinds() == ["disconnection_warning"]

    def test_store_failure(self, store, scheduler) -> None:
        with patch.object(store, "list_business_units", side_effect=PersistenceError("offline")):
            report = scheduler.run_scheduled_tasks(utc(2024, 3, 10))

        assert report.errors == ["Failed to fetch business units: offline"]
        assert not report.success

    def test_wrapper(self, scheduler) -> None:
        report = run_scheduled_tasks(scheduler, utc(2024, 3, 3))

        assert report.tasks_executed == ["No scheduled tasks for today"]
