"""Plan catalogue, business unit and subscription generators."""

from __future__ import annotations

import random
from datetime import date, timedelta
from decimal import Decimal

from isp_billing.engine.schedule import ScheduleResolver
from isp_billing.generators.base import BaseGenerator
from isp_billing.models.billing import (
    BillingCycle,
    BusinessUnit,
    PeriodType,
    Plan,
    Subscription,
)

# (name, monthly fee)
PLAN_CATALOGUE = [
    ("Fiber 25 Mbps", Decimal("999")),
    ("Fiber 50 Mbps", Decimal("1299")),
    ("Fiber 100 Mbps", Decimal("1699")),
    ("Fiber 200 Mbps", Decimal("2499")),
]

BUSINESS_UNIT_NAMES = ["Bulihan", "Extension", "Malanggam"]


class PlanGenerator(BaseGenerator):
    """Build the plan catalogue."""

    def generate_catalogue(self) -> list[Plan]:
        """One plan per catalogue entry."""
        return [
            Plan(plan_id=self.fake.uuid4(), name=name, monthly_fee=fee)
            for name, fee in PLAN_CATALOGUE
        ]


class BusinessUnitGenerator(BaseGenerator):
    """Build the service areas."""

    def generate_all(self, names: list[str] | None = None) -> list[BusinessUnit]:
        return [
            BusinessUnit(business_unit_id=self.fake.uuid4(), name=name)
            for name in names or BUSINESS_UNIT_NAMES
        ]


class SubscriptionGenerator(BaseGenerator):
    """Generate subscriptions for existing customers, plans and areas."""

    # Cheaper plans are more popular
    PLAN_WEIGHTS = [0.40, 0.30, 0.20, 0.10]

    def __init__(
        self,
        seed: int | None = None,
        resolver: ScheduleResolver | None = None,
        max_age_days: int = 365,
    ) -> None:
        super().__init__(seed)
        self.resolver = resolver or ScheduleResolver()
        self.max_age_days = max_age_days

    def generate(
        self,
        customer_id: str,
        plans: list[Plan],
        business_unit: BusinessUnit,
        referrer_id: str | None = None,
        today: date | None = None,
    ) -> Subscription:
        """Generate a single subscription.

        Parameters
        ----------
        customer_id : str
            Subscriber.
        plans : list[Plan]
            Plans to pick from.
        business_unit : BusinessUnit
            Service area; decides the billing cycle.
        referrer_id : str | None
            Customer who referred this subscriber.
        today : date | None
            Upper bound for the installation date.

        Returns
        -------
        Subscription
            Active subscription with a zero balance.
        """
        today = today or date.today()
        weights = self.PLAN_WEIGHTS[: len(plans)] if len(plans) <= len(self.PLAN_WEIGHTS) else None
        plan = random.choices(plans, weights=weights, k=1)[0]

        profile = self.resolver.resolve(business_unit.name)
        cycle = (
            BillingCycle.FULL_MONTH
            if profile.period_type == PeriodType.FULL_MONTH
            else BillingCycle.MID_MONTH
        )

        return Subscription(
            subscription_id=self.fake.uuid4(),
            customer_id=customer_id,
            plan_id=plan.plan_id,
            business_unit_id=business_unit.business_unit_id,
            date_installed=today - timedelta(days=random.randint(0, self.max_age_days)),
            billing_cycle=cycle,
            referrer_id=referrer_id,
        )
