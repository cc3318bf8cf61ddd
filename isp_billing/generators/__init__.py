"""Sample-data generators."""

from isp_billing.generators.customer import CustomerGenerator
from isp_billing.generators.portfolio import SubscriberPortfolioScenario
from isp_billing.generators.subscription import (
    BusinessUnitGenerator,
    PlanGenerator,
    SubscriptionGenerator,
)

__all__ = [
    "BusinessUnitGenerator",
    "CustomerGenerator",
    "PlanGenerator",
    "SubscriberPortfolioScenario",
    "SubscriptionGenerator",
]
