"""Semaphore SMS gateway."""

import json
import logging

import httpx

from isp_billing.config import SmsConfig
from isp_billing.models.base import Notification
from isp_billing.notifications.queue import SendResult
from isp_billing.validation import format_phone_number

logger = logging.getLogger(__name__)


class SemaphoreSmsGateway:
    """Deliver notifications as SMS through the Semaphore HTTP API."""

    def __init__(self, config: SmsConfig, client: httpx.Client | None = None) -> None:
        """Initialize the gateway.

        Parameters
        ----------
        config : SmsConfig
            API key, sender name and endpoint.
        client : httpx.Client | None
            HTTP client to use (a transport-mocked client in tests).
        """
        self.config = config
        self._client = client or httpx.Client(timeout=httpx.Timeout(config.timeout_seconds))

    def send(self, notification: Notification) -> SendResult:
        """Send a queued notification."""
        return self.send_sms(notification.recipient, notification.message)

    def send_sms(self, phone: str, message: str) -> SendResult:
        """Send one text message.

        Transport and API errors are returned as failed results; nothing
        is raised to the caller.
        """
        if not self.config.api_key:
            logger.error("SEMAPHORE_API_KEY is not configured")
            return SendResult(success=False, error="SMS service not configured")

        number = format_phone_number(phone)
        body = {
            "apikey": self.config.api_key,
            "number": number,
            "message": message,
            "sendername": self.config.sender_name,
        }
        logger.debug("Sending SMS to %s (%d chars)", number, len(message))

        try:
            response = self._client.post(f"{self.config.base_url}/messages", json=body)
        except httpx.RequestError as exc:
            logger.error("SMS request to %s failed: %s", number, exc)
            return SendResult(success=False, error=str(exc))

        try:
            data = response.json()
        except json.JSONDecodeError:
            return SendResult(
                success=False,
                error=f"Invalid JSON response: {response.text[:200]}",
            )

        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            return SendResult(
                success=False,
                error=error if isinstance(error, str) else json.dumps(error),
            )

        if response.is_success:
            first = data[0] if isinstance(data, list) and data else None
            if isinstance(first, dict) and first.get("message_id"):
                return SendResult(success=True, message_id=str(first["message_id"]))
            if isinstance(data, dict) and data.get("message_id"):
                return SendResult(success=True, message_id=str(data["message_id"]))

        return SendResult(
            success=False,
            error=f"Unexpected response ({response.status_code}): {json.dumps(data)[:200]}",
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()
