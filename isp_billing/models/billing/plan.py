"""Plan model for billing domain."""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class Plan:
    """Fixed-fee internet plan."""

    plan_id: str
    name: str
    monthly_fee: Decimal

    def __post_init__(self) -> None:
        if self.monthly_fee < 0:
            raise ValueError(f"Plan {self.plan_id} has a negative monthly fee")
