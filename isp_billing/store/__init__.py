"""Storage interface and the in-memory implementation."""

from isp_billing.store.base import BillingStore, new_id
from isp_billing.store.memory import InMemoryBillingStore

__all__ = ["BillingStore", "InMemoryBillingStore", "new_id"]
