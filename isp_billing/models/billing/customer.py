"""Customer and business unit models."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Customer:
    """Subscriber of one or more internet plans."""

    customer_id: str
    name: str
    mobile_number: str  # local 09XXXXXXXXX form
    created_at: datetime
    address: str = ""
    email: str | None = None


@dataclass
class BusinessUnit:
    """Service area whose name selects a billing profile."""

    business_unit_id: str
    name: str
