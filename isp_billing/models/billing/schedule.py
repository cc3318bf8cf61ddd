"""Billing schedule models."""

from dataclasses import dataclass, field
from datetime import date

from isp_billing.models.billing.enums import PeriodType


@dataclass(frozen=True)
class BillingProfile:
    """Day-of-month rules for one family of business units."""

    invoice_generation_day: int
    due_day: int
    disconnection_day: int
    disconnection_next_month: bool
    period_type: PeriodType

    def __post_init__(self) -> None:
        for name in ("invoice_generation_day", "due_day", "disconnection_day"):
            value = getattr(self, name)
            if not 1 <= value <= 31:
                raise ValueError(f"{name} must be between 1 and 31, got {value}")


@dataclass(frozen=True)
class BillingDates:
    """Concrete dates for one business unit and target month."""

    from_date: date
    to_date: date
    due_date: date
    disconnection_date: date
    generation_date: date


@dataclass
class TodaysTasks:
    """Profile keys that need each scheduled action today."""

    should_generate_invoices: list[str] = field(default_factory=list)
    should_send_due_reminders: list[str] = field(default_factory=list)
    should_send_disconnection_warnings: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.should_generate_invoices
            or self.should_send_due_reminders
            or self.should_send_disconnection_warnings
        )
