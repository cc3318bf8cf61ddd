"""Shared wiring for billing services."""

from __future__ import annotations

import time
from typing import Callable

from isp_billing.config import BillingConfig
from isp_billing.engine.schedule import ScheduleResolver
from isp_billing.models.base import Notification
from isp_billing.models.billing import Customer, Subscription
from isp_billing.notifications.queue import NotificationGateway, NotificationQueue
from isp_billing.store.base import BillingStore


class BillingService:
    """Base for services operating on one store.

    Parameters
    ----------
    store : BillingStore
        Storage backend.
    config : BillingConfig | None
        Engine configuration (defaults when omitted).
    gateway : NotificationGateway | None
        Delivery backend for customer messages. Messages are dropped with
        a warning when no gateway is configured.
    resolver : ScheduleResolver | None
        Billing calendar; built from ``config.billing_profiles`` when omitted.
    sleep : Callable[[float], None]
        Pause between notification batches.
    """

    def __init__(
        self,
        store: BillingStore,
        config: BillingConfig | None = None,
        gateway: NotificationGateway | None = None,
        resolver: ScheduleResolver | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.config = config or BillingConfig()
        self.gateway = gateway
        self.resolver = resolver or ScheduleResolver(self.config.billing_profiles)
        self._sleep = sleep

    @property
    def signature(self) -> str:
        return self.config.notifications.company_signature

    def _new_queue(self) -> NotificationQueue:
        settings = self.config.notifications
        return NotificationQueue(
            self.gateway,
            batch_size=settings.batch_size,
            batch_delay_seconds=settings.batch_delay_seconds,
            max_attempts=settings.max_attempts,
            sleep=self._sleep,
        )

    @staticmethod
    def _notify(
        queue: NotificationQueue,
        customer: Customer,
        subscription: Subscription,
        kind: str,
        message: str,
        **metadata,
    ) -> bool:
        """Queue a message if the customer has a mobile number."""
        if not customer.mobile_number:
            return False
        queue.enqueue(
            Notification(
                recipient=customer.mobile_number,
                message=message,
                kind=kind,
                subscription_id=subscription.subscription_id,
                metadata=metadata,
            )
        )
        return True
