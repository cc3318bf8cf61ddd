"""Tests for mid-cycle plan changes."""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

from isp_billing.engine import PlanChangeService, preview_plan_change
from isp_billing.exceptions import PersistenceError
from isp_billing.models.billing import BillingCycle, Invoice, PaymentStatus


@pytest.fixture
def plan_changes(store, gateway, sleeps) -> PlanChangeService:
    return PlanChangeService(store, gateway=gateway, sleep=sleeps.append)


def seed_paid_period(store, subscription_id, start, end) -> str:
    invoice_id = f"inv-{subscription_id}-paid"
    store.add_invoice(
        Invoice(
            invoice_id=invoice_id,
            subscription_id=subscription_id,
            from_date=start,
            to_date=end,
            due_date=end,
            amount_due=Decimal("1000"),
            amount_paid=Decimal("1000"),
            payment_status=PaymentStatus.PAID,
        )
    )
    return invoice_id


class TestPreviewPlanChange:
    """Pure preview arithmetic."""

    def test_unpaid_mid_month_upgrade(self) -> None:
        preview = preview_plan_change(
            Decimal("1000"), Decimal("1500"), BillingCycle.MID_MONTH, date(2024, 3, 20)
        )

        assert preview.billing_period_start == date(2024, 3, 15)
        assert preview.billing_period_end == date(2024, 4, 14)
        assert preview.old_plan.days == 5
        assert preview.old_plan.amount == Decimal("166.67")
        assert preview.old_plan.to_date == date(2024, 3, 19)
        assert preview.new_plan.days == 26
        assert preview.new_plan.amount == Decimal("1300.00")
        assert preview.is_upgrade
        assert preview.total == Decimal("1466.67")
        assert preview.total_difference == Decimal("466.67")

    def test_paid_period_credits_unused_days(self) -> None:
        preview = preview_plan_change(
            Decimal("1000"), Decimal("1500"), "15th", date(2024, 3, 20), is_paid=True
        )

        assert preview.old_plan.amount == Decimal("-866.67")
        assert preview.old_plan.from_date == date(2024, 3, 20)
        assert preview.total == Decimal("433.33")
        assert preview.total_difference == preview.total

    def test_full_month_cycle(self) -> None:
        preview = preview_plan_change(
            Decimal("1500"), Decimal("1000"), BillingCycle.FULL_MONTH, date(2024, 3, 11)
        )

        assert preview.billing_period_start == date(2024, 3, 1)
        assert preview.billing_period_end == date(2024, 3, 31)
        assert preview.old_plan.days == 10
        assert preview.old_plan.amount == Decimal("500.00")
        assert preview.new_plan.days == 21
        assert preview.new_plan.amount == Decimal("700.00")
        assert not preview.is_upgrade

    def test_change_on_period_start_has_no_old_days(self) -> None:
        preview = preview_plan_change(
            Decimal("1000"), Decimal("1500"), BillingCycle.MID_MONTH, date(2024, 3, 15)
        )

        assert preview.old_plan.days == 0
        assert preview.old_plan.amount == Decimal("0.00")

    def test_early_month_change_uses_previous_period(self) -> None:
        preview = preview_plan_change(
            Decimal("1000"), Decimal("1500"), BillingCycle.MID_MONTH, date(2024, 1, 5)
        )

        assert preview.billing_period_start == date(2023, 12, 15)
        assert preview.billing_period_end == date(2024, 1, 14)


class TestChangePlan:
    """Applying a plan change to a stored subscription."""

    def test_unpaid_period_invoices_used_days(self, store, add_subscription, plan_changes) -> None:
        sid = add_subscription()

        result = plan_changes.change_plan(sid, "plan-1500", date(2024, 3, 20))

        assert result.success
        assert result.adjustment == Decimal("166.67")
        invoice = store.get_invoice(result.invoice_id)
        assert invoice.amount_due == Decimal("166.67")
        assert invoice.from_date == date(2024, 3, 15)
        assert invoice.to_date == date(2024, 3, 19)
        assert invoice.due_date == date(2024, 4, 14)
        assert invoice.is_prorated
        assert invoice.prorated_days == 5
        assert "Plan changed to Fiber 1500" in invoice.notes

        subscription = store.get_subscription(sid)
        assert subscription.plan_id == "plan-1500"
        assert subscription.balance == Decimal("166.67")

    def test_paid_period_credits_balance(self, store, add_subscription, plan_changes) -> None:
        sid = add_subscription()
        seed_paid_period(store, sid, date(2024, 3, 15), date(2024, 4, 14))

        result = plan_changes.change_plan(sid, "plan-1500", date(2024, 3, 20))

        assert result.success
        assert result.invoice_id is None
        assert result.adjustment == Decimal("-866.67")
        assert store.get_subscription(sid).balance == Decimal("-866.67")
        assert len(store.list_invoices(subscription_ids=[sid])) == 1

    def test_records_pending_change(self, store, add_subscription, plan_changes) -> None:
        sid = add_subscription()

        result = plan_changes.change_plan(sid, "plan-1500", date(2024, 3, 20))

        [change] = plan_changes.get_pending_plan_changes(sid)
        assert change.plan_change_id == result.plan_change_id
        assert change.old_plan_id == "plan-1000"
        assert change.new_monthly_fee == Decimal("1500")
        assert change.billing_period_end == date(2024, 4, 14)
        assert change.invoice_id == result.invoice_id
        assert not change.processed

    def test_same_plan_rejected(self, store, add_subscription, plan_changes) -> None:
        sid = add_subscription()

        result = plan_changes.change_plan(sid, "plan-1000", date(2024, 3, 20))

        assert result.errors == ["New plan is the same as current plan"]
        assert store.list_plan_changes() == []

    def test_unknown_plan(self, add_subscription, plan_changes) -> None:
        sid = add_subscription()

        result = plan_changes.change_plan(sid, "plan-missing", date(2024, 3, 20))

        assert not result.success
        assert result.errors[0].startswith("Plan change failed:")

    def test_failure_leaves_nothing_behind(self, store, add_subscription, plan_changes) -> None:
        sid = add_subscription()

        with patch.object(store, "add_plan_change", side_effect=PersistenceError("disk full")):
            result = plan_changes.change_plan(sid, "plan-1500", date(2024, 3, 20))

        assert result.errors == ["Plan change failed: disk full"]
        assert store.list_invoices(subscription_ids=[sid]) == []
        subscription = store.get_subscription(sid)
        assert subscription.plan_id == "plan-1000"
        assert subscription.balance == Decimal("0")

    def test_service_preview_detects_paid_period(
        self, store, add_subscription, plan_changes
    ) -> None:
        sid = add_subscription()
        seed_paid_period(store, sid, date(2024, 3, 15), date(2024, 4, 14))

        preview = plan_changes.preview(sid, "plan-1500", date(2024, 3, 20))

        assert preview.is_paid
        assert preview.old_plan.amount == Decimal("-866.67")
        assert store.list_plan_changes() == []


class TestRealizePendingPlanChange:
    """Deferred new-plan invoice."""

    def test_invoices_new_plan_share(self, store, add_subscription, plan_changes) -> None:
        sid = add_subscription()
        plan_changes.change_plan(sid, "plan-1500", date(2024, 3, 20))
        [change] = plan_changes.get_pending_plan_changes(sid)

        invoice = plan_changes.realize_pending_plan_change(change)

        assert invoice.amount_due == Decimal("1300.00")
        assert invoice.from_date == date(2024, 3, 20)
        assert invoice.to_date == date(2024, 4, 14)
        assert invoice.prorated_days == 26
        assert invoice.notes.endswith("After plan change")
        assert store.get_subscription(sid).balance == Decimal("1466.67")
        assert plan_changes.get_pending_plan_changes(sid) == []
