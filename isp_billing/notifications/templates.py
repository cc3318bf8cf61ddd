"""SMS message templates."""

from datetime import date
from decimal import Decimal

SIGNATURE = "Allstar"


def format_amount(amount: Decimal) -> str:
    """Thousands-separated amount, cents shown only when non-zero."""
    amount = Decimal(amount)
    if amount == amount.to_integral_value():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def format_date_ph(value: date) -> str:
    """Long-form date, e.g. ``December 15, 2025``."""
    return f"{value:%B} {value.day}, {value.year}"


def invoice_generated(
    customer_name: str,
    amount: Decimal,
    due_date: date,
    business_unit: str,
    signature: str = SIGNATURE,
) -> str:
    return (
        f"Hi {customer_name}! Your {business_unit} internet bill of "
        f"P{format_amount(amount)} is now ready. Due: {format_date_ph(due_date)}. "
        f"Please pay on time to avoid disconnection. Thank you! - {signature}"
    )


def due_date_reminder(
    customer_name: str,
    amount: Decimal,
    due_date: date,
    signature: str = SIGNATURE,
) -> str:
    return (
        f"Reminder: Hi {customer_name}, your internet bill of P{format_amount(amount)} "
        f"is due {format_date_ph(due_date)}. Please settle to avoid service "
        f"interruption. Thank you! - {signature}"
    )


def disconnection_warning(
    customer_name: str,
    disconnection_date: date,
    signature: str = SIGNATURE,
) -> str:
    return (
        f"URGENT: Hi {customer_name}, your internet will be disconnected on "
        f"{format_date_ph(disconnection_date)} due to unpaid balance. Please pay "
        f"immediately to continue service. - {signature}"
    )


def payment_received(
    customer_name: str,
    amount: Decimal,
    new_balance: Decimal,
    signature: str = SIGNATURE,
) -> str:
    if new_balance > 0:
        balance_line = f"Remaining balance: P{format_amount(new_balance)}."
    elif new_balance < 0:
        balance_line = f"You have P{format_amount(abs(new_balance))} credits."
    else:
        balance_line = "Your account is fully paid."
    return (
        f"Hi {customer_name}! We received your payment of P{format_amount(amount)}. "
        f"{balance_line} Thank you! - {signature}"
    )


def new_subscription(
    customer_name: str,
    plan_name: str,
    monthly_fee: Decimal,
    signature: str = SIGNATURE,
) -> str:
    return (
        f"Welcome {customer_name}! Your {plan_name} subscription is now active. "
        f"Monthly fee: P{format_amount(monthly_fee)}. Thank you for choosing "
        f"{signature}! - {signature}"
    )
