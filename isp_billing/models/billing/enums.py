"""Enumeration types for billing domain entities."""

from enum import Enum


class BillingCycle(str, Enum):
    MID_MONTH = "15th"
    FULL_MONTH = "30th"


class PeriodType(str, Enum):
    MID_MONTH = "mid-month"
    FULL_MONTH = "full-month"


class PaymentStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTIALLY_PAID = "Partially Paid"
    PAID = "Paid"
    PENDING_VERIFICATION = "Pending Verification"


class PaymentMode(str, Enum):
    CASH = "Cash"
    E_WALLET = "E-Wallet"
    REFERRAL_CREDIT = "Referral Credit"


class SubmissionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
