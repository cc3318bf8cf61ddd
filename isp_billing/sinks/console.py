"""Console sink for debugging and development."""

import json
from typing import Any

from isp_billing.models.base import Notification
from isp_billing.notifications.queue import SendResult
from isp_billing.sinks.serialization import to_dict


class ConsoleSink:
    """Print notifications and billing records to stdout."""

    def __init__(self, pretty: bool = True, max_records: int | None = None) -> None:
        """Initialize console sink.

        Parameters
        ----------
        pretty : bool
            Pretty-print JSON output.
        max_records : int | None
            Maximum records to print per batch (None for all).
        """
        self.pretty = pretty
        self.max_records = max_records
        self._counts: dict[str, int] = {}

    def send(self, notification: Notification) -> SendResult:
        """Print a notification in place of delivering it."""
        print(f"[{notification.kind}] -> {notification.recipient}: {notification.message}")
        self._counts["notifications"] = self._counts.get("notifications", 0) + 1
        return SendResult(success=True)

    def write_batch(self, entity_type: str, records: list[Any]) -> None:
        """Write a batch of records to console."""
        print(f"\n{'='*60}")
        print(f"Entity: {entity_type} ({len(records)} records)")
        print("=" * 60)

        display_records = records[: self.max_records] if self.max_records else records

        for record in display_records:
            print(json.dumps(to_dict(record), indent=2 if self.pretty else None, ensure_ascii=False))

        if self.max_records and len(records) > self.max_records:
            print(f"... and {len(records) - self.max_records} more records")

        self._counts[entity_type] = self._counts.get(entity_type, 0) + len(records)

    def close(self) -> None:
        """Print summary and close."""
        print(f"\n{'='*60}")
        print("Console Sink Summary")
        print("=" * 60)
        for entity_type, count in self._counts.items():
            print(f"  {entity_type}: {count}")
