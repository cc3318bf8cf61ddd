"""Customer generator."""

from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import Iterator

from isp_billing.generators.base import BaseGenerator
from isp_billing.models.billing import Customer

# Philippine mobile network prefixes (after the leading 0)
MOBILE_PREFIXES = ["905", "906", "915", "916", "917", "926", "927", "935", "945", "955",
                   "908", "918", "919", "920", "921", "928", "929", "939", "947", "961",
                   "922", "923", "925", "932", "933", "934", "942", "943", "973", "974"]


class CustomerGenerator(BaseGenerator):
    """Generate synthetic subscribers."""

    EMAIL_RATE = 0.4

    def generate(self) -> Customer:
        """Generate a single customer.

        Returns
        -------
        Customer
            Generated customer.
        """
        return self._generate_one()

    def generate_batch(self, count: int) -> Iterator[Customer]:
        """Generate multiple customers.

        Parameters
        ----------
        count : int
            Number of customers to generate.

        Yields
        ------
        Customer
            Generated customers.
        """
        for _ in range(count):
            yield self._generate_one()

    def mobile_number(self) -> str:
        """Local-format mobile number, e.g. ``09171234567``."""
        return f"0{random.choice(MOBILE_PREFIXES)}{random.randint(0, 9_999_999):07d}"

    def _generate_one(self) -> Customer:
        days_ago = random.randint(0, 3 * 365)
        return Customer(
            customer_id=self.fake.uuid4(),
            name=self.fake.name(),
            mobile_number=self.mobile_number(),
            created_at=datetime.now() - timedelta(days=days_ago),
            address=self.fake.address().replace("\n", ", "),
            email=self.fake.email() if random.random() < self.EMAIL_RATE else None,
        )
