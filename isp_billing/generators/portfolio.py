"""Subscriber portfolio scenario for demos and load tests."""

import logging
import random
from datetime import date
from typing import Any

from isp_billing.generators.customer import CustomerGenerator
from isp_billing.generators.subscription import (
    BusinessUnitGenerator,
    PlanGenerator,
    SubscriptionGenerator,
)
from isp_billing.store.memory import InMemoryBillingStore

logger = logging.getLogger(__name__)


class SubscriberPortfolioScenario:
    """Populate a store with plans, service areas, customers and subscriptions.

    Some customers hold a second line, and some are referred by an
    earlier customer so that referral discounts come into play.
    """

    def __init__(
        self,
        num_customers: int = 50,
        second_line_rate: float = 0.15,
        referral_rate: float = 0.20,
        today: date | None = None,
        seed: int | None = None,
    ) -> None:
        """Initialize the scenario.

        Parameters
        ----------
        num_customers : int
            Number of customers to generate.
        second_line_rate : float
            Share of customers with two subscriptions.
        referral_rate : float
            Share of customers referred by an earlier customer.
        today : date | None
            Latest possible installation date.
        seed : int | None
            Random seed for reproducibility.
        """
        self.num_customers = num_customers
        self.second_line_rate = second_line_rate
        self.referral_rate = referral_rate
        self.today = today or date.today()

        if seed is not None:
            random.seed(seed)

        self.store = InMemoryBillingStore()
        self._customer_gen = CustomerGenerator(seed=seed)
        self._plan_gen = PlanGenerator(seed=seed)
        self._unit_gen = BusinessUnitGenerator(seed=seed)
        self._subscription_gen = SubscriptionGenerator(seed=seed)

    def generate(self) -> InMemoryBillingStore:
        """Generate all data for the scenario.

        Returns
        -------
        InMemoryBillingStore
            Store containing the generated portfolio.
        """
        logger.info("Starting portfolio scenario: %d customers", self.num_customers)

        plans = self._plan_gen.generate_catalogue()
        for plan in plans:
            self.store.add_plan(plan)

        units = self._unit_gen.generate_all()
        for unit in units:
            self.store.add_business_unit(unit)

        customer_ids: list[str] = []
        for customer in self._customer_gen.generate_batch(self.num_customers):
            self.store.add_customer(customer)

            referrer = None
            if customer_ids and random.random() < self.referral_rate:
                referrer = random.choice(customer_ids)
            customer_ids.append(customer.customer_id)

            lines = 2 if random.random() < self.second_line_rate else 1
            for _ in range(lines):
                subscription = self._subscription_gen.generate(
                    customer.customer_id,
                    plans,
                    random.choice(units),
                    referrer_id=referrer,
                    today=self.today,
                )
                self.store.add_subscription(subscription)

        logger.info("Generated portfolio: %s", self.store.summary())
        return self.store

    def export(self, sinks: list[Any]) -> None:
        """Write the generated master data to sinks."""
        for sink in sinks:
            sink.write_batch("business_units", list(self.store.business_units.values()))
            sink.write_batch("plans", list(self.store.plans.values()))
            sink.write_batch("customers", list(self.store.customers.values()))
            sink.write_batch("subscriptions", list(self.store.subscriptions.values()))

        logger.info("Exported portfolio to %d sinks", len(sinks))
