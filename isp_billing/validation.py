"""Phone number and balance display helpers."""

import math
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

_NON_DIGITS = re.compile(r"\D")
_SEPARATORS = re.compile(r"[\s-]")


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    error: str | None = None


@dataclass(frozen=True)
class BalanceDisplay:
    label: str  # "Balance" or "Credits"
    amount: int
    display: str


def format_phone_number(phone: str) -> str:
    """Normalise a Philippine mobile number to ``63XXXXXXXXXX``."""
    cleaned = _NON_DIGITS.sub("", phone)

    if cleaned.startswith("0"):
        cleaned = "63" + cleaned[1:]

    if not cleaned.startswith("63"):
        cleaned = "63" + cleaned

    return cleaned


def validate_mobile_number(number: str) -> ValidationResult:
    """Check the local ``09XXXXXXXXX`` mobile format."""
    cleaned = _SEPARATORS.sub("", number)

    if not cleaned:
        return ValidationResult(False, "Mobile number is required")
    if not cleaned.isdigit():
        return ValidationResult(False, "Mobile number must contain only digits")
    if not cleaned.startswith("09"):
        return ValidationResult(False, "Mobile number must start with 09")
    if len(cleaned) != 11:
        return ValidationResult(False, "Mobile number must be exactly 11 digits")

    return ValidationResult(True)


def format_mobile_number(number: str) -> str:
    """Display form ``0917-123-4567``."""
    cleaned = _SEPARATORS.sub("", number)
    if len(cleaned) == 11:
        return f"{cleaned[:4]}-{cleaned[4:7]}-{cleaned[7:]}"
    return cleaned


def round_up_balance(balance: Decimal) -> int:
    """Whole-number balance: debts round up, credits round down."""
    if balance == 0:
        return 0
    return math.ceil(balance) if balance > 0 else math.floor(balance)


def format_balance_display(balance: Decimal) -> BalanceDisplay:
    """Label a balance as owed or credit, rounded to whole pesos."""
    rounded = int(Decimal(balance).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    if rounded >= 0:
        return BalanceDisplay("Balance", rounded, f"₱{rounded:,}")
    return BalanceDisplay("Credits", abs(rounded), f"₱{abs(rounded):,}")
