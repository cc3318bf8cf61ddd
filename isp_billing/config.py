"""Configuration management for isp-billing."""

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

from isp_billing.exceptions import ConfigurationError
from isp_billing.models.billing import BillingProfile, PeriodType

# Billing profiles keyed by the business-unit name fragment they match.
# Order matters: resolution walks the table and takes the first match.
DEFAULT_BILLING_PROFILES: Mapping[str, BillingProfile] = MappingProxyType(
    {
        "bulihan": BillingProfile(
            invoice_generation_day=10,
            due_day=15,
            disconnection_day=20,
            disconnection_next_month=False,
            period_type=PeriodType.MID_MONTH,
        ),
        "extension": BillingProfile(
            invoice_generation_day=10,
            due_day=15,
            disconnection_day=20,
            disconnection_next_month=False,
            period_type=PeriodType.MID_MONTH,
        ),
        "malanggam": BillingProfile(
            invoice_generation_day=25,
            due_day=30,  # clamped in short months
            disconnection_day=5,
            disconnection_next_month=True,
            period_type=PeriodType.FULL_MONTH,
        ),
    }
)


@dataclass
class SmsConfig:
    """Semaphore SMS gateway configuration."""

    api_key: str | None = None
    sender_name: str = "ALLSTAR"
    base_url: str = "https://api.semaphore.co/api/v4"
    timeout_seconds: float = 10.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to request-body defaults (API key masked)."""
        return {
            "apikey": "***hidden***" if self.api_key else None,
            "sendername": self.sender_name,
            "base_url": self.base_url,
        }


@dataclass
class KafkaConfig:
    """Kafka producer configuration for the notification outbox."""

    bootstrap_servers: str = "localhost:9092"
    topic: str = "billing.notifications"
    acks: str = "all"
    linger_ms: int = 5
    retries: int = 3

    def to_dict(self) -> dict[str, Any]:
        """Convert to confluent-kafka config dict."""
        return {
            "bootstrap.servers": self.bootstrap_servers,
            "acks": self.acks,
            "linger.ms": self.linger_ms,
            "retries": self.retries,
        }


@dataclass
class NotificationConfig:
    """Notification dispatch configuration."""

    sink: str = "sms"  # sms, kafka, console
    batch_size: int = 10
    batch_delay_seconds: float = 1.0
    max_attempts: int = 2
    company_signature: str = "Allstar"


@dataclass
class BillingConfig:
    """Main configuration for the billing engine."""

    sms: SmsConfig = field(default_factory=SmsConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    billing_profiles: Mapping[str, BillingProfile] = field(
        default_factory=lambda: DEFAULT_BILLING_PROFILES
    )
    referral_discount: Decimal = Decimal("300")
    timezone_offset_hours: int = 8
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "BillingConfig":
        """Create config from environment variables."""
        import json
        import os

        sms = SmsConfig(
            api_key=os.getenv("SEMAPHORE_API_KEY"),
            sender_name=os.getenv("SEMAPHORE_SENDER_NAME", "ALLSTAR"),
        )

        kafka = KafkaConfig(
            bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
            topic=os.getenv("NOTIFICATION_TOPIC", "billing.notifications"),
        )

        notifications = NotificationConfig(
            sink=os.getenv("NOTIFICATION_SINK", "sms").lower(),
        )

        profiles_str = os.getenv("BILLING_PROFILES")
        billing_profiles = (
            parse_billing_profiles(json.loads(profiles_str))
            if profiles_str
            else DEFAULT_BILLING_PROFILES
        )

        return cls(
            sms=sms,
            kafka=kafka,
            notifications=notifications,
            billing_profiles=billing_profiles,
            referral_discount=Decimal(os.getenv("REFERRAL_DISCOUNT", "300")),
            timezone_offset_hours=int(os.getenv("BILLING_TZ_OFFSET_HOURS", "8")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def parse_billing_profiles(raw: dict[str, dict[str, Any]]) -> Mapping[str, BillingProfile]:
    """Build an immutable profile table from a JSON-style mapping.

    Parameters
    ----------
    raw : dict[str, dict[str, Any]]
        Profile key to field mapping, e.g.
        ``{"bulihan": {"invoice_generation_day": 10, ...}}``.

    Returns
    -------
    Mapping[str, BillingProfile]
        Read-only profile table preserving the input order.
    """
    if not raw:
        raise ConfigurationError("Billing profile table is empty")

    profiles: dict[str, BillingProfile] = {}
    for key, values in raw.items():
        try:
            profiles[key.lower()] = BillingProfile(
                invoice_generation_day=int(values["invoice_generation_day"]),
                due_day=int(values["due_day"]),
                disconnection_day=int(values["disconnection_day"]),
                disconnection_next_month=bool(values.get("disconnection_next_month", False)),
                period_type=PeriodType(values.get("period_type", PeriodType.MID_MONTH.value)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid billing profile {key!r}: {exc}") from exc

    return MappingProxyType(profiles)
