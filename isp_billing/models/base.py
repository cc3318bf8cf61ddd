"""Base models shared across the engine."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Notification:
    """Outbound customer message envelope.

    Built during a billing call and handed to a notification queue once
    the billing writes have committed.
    """

    recipient: str  # mobile number as stored on the customer
    message: str
    kind: str  # invoice_generated, due_reminder, disconnection_warning, ...
    subscription_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    metadata: dict = field(default_factory=dict)
