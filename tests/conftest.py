"""Pytest configuration and fixtures."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from isp_billing.config import BillingConfig
from isp_billing.models.base import Notification
from isp_billing.models.billing import (
    BillingCycle,
    BusinessUnit,
    Customer,
    Plan,
    Subscription,
)
from isp_billing.notifications.queue import SendResult
from isp_billing.store.memory import InMemoryBillingStore


class RecordingGateway:
    """Gateway double that records every notification it is given."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[Notification] = []
        self.attempts = 0

    def send(self, notification: Notification) -> SendResult:
        self.attempts += 1
        if self.fail:
            return SendResult(success=False, error="gateway down")
        self.sent.append(notification)
        return SendResult(success=True, message_id=f"msg-{len(self.sent)}")

    def close(self) -> None:
        pass

    def kinds(self) -> list[str]:
        return [n.kind for n in self.sent]


@pytest.fixture
def seed() -> int:
    """Fixed seed for reproducible tests."""
    return 42


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def sleeps() -> list[float]:
    """Collects requested sleep durations instead of sleeping."""
    return []


@pytest.fixture
def config() -> BillingConfig:
    return BillingConfig()


@pytest.fixture
def store() -> InMemoryBillingStore:
    """Store with two plans, two business units and one customer."""
    store = InMemoryBillingStore()
    store.add_plan(Plan(plan_id="plan-1000", name="Fiber 1000", monthly_fee=Decimal("1000")))
    store.add_plan(Plan(plan_id="plan-1500", name="Fiber 1500", monthly_fee=Decimal("1500")))
    store.add_business_unit(BusinessUnit(business_unit_id="bu-bulihan", name="Bulihan"))
    store.add_business_unit(BusinessUnit(business_unit_id="bu-malanggam", name="Malanggam"))
    store.add_customer(
        Customer(
            customer_id="cust-001",
            name="Juan Dela Cruz",
            mobile_number="09171234567",
            created_at=datetime(2023, 1, 1),
        )
    )
    return store


@pytest.fixture
def add_subscription(store: InMemoryBillingStore):
    """Factory adding a subscription to the store and returning its id."""
    counter = {"n": 0}

    def _add(
        date_installed: date | None = date(2023, 1, 1),
        balance: Decimal = Decimal("0"),
        plan_id: str = "plan-1000",
        business_unit_id: str = "bu-bulihan",
        customer_id: str = "cust-001",
        billing_cycle: BillingCycle = BillingCycle.MID_MONTH,
        referrer_id: str | None = None,
        active: bool = True,
    ) -> str:
        counter["n"] += 1
        subscription_id = f"sub-{counter['n']:03d}"
        store.add_subscription(
            Subscription(
                subscription_id=subscription_id,
                customer_id=customer_id,
                plan_id=plan_id,
                business_unit_id=business_unit_id,
                date_installed=date_installed,
                billing_cycle=billing_cycle,
                balance=Decimal(balance),
                referrer_id=referrer_id,
                active=active,
            )
        )
        return subscription_id

    return _add


@pytest.fixture
def failing_gateway() -> RecordingGateway:
    return RecordingGateway(fail=True)
