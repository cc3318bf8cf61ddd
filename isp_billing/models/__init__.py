"""Domain models for the billing engine."""

from isp_billing.models.base import Notification

__all__ = ["Notification"]
