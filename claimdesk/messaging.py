"""
Outbound messaging integrations.

Email goes through the Resend REST API, SMS through Telnyx, and automation
webhooks are plain JSON POSTs. Every call runs under the retry manager with
the vendor's named policy and circuit breaker.
"""

import re
from typing import Any, Dict, List, Optional

import aiohttp

from .error_handler import ConfigurationError, DeliveryError, RetryableError
from .logging_conf import get_logger
from .retry_utils import retry_manager

logger = get_logger(__name__)

REQUEST_TIMEOUT = 30


def normalize_phone(phone: str) -> str:
    """
    Normalize a phone number to E.164.

    Ten digits are treated as a North American number and get ``+1``;
    anything else gets a bare ``+`` prefix.
    """
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        return "+1" + digits
    return "+" + digits


async def post_json(
    channel: str,
    url: str,
    payload: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
    timeout: int = REQUEST_TIMEOUT
) -> Dict[str, Any]:
    """
    POST a JSON body and return the decoded response.

    Raises:
        RetryableError: the receiver answered 429 or 5xx
        DeliveryError: any other non-2xx answer
    """
    async with aiohttp.ClientSession() as session:
        async with session.post(
            url,
            json=payload,
            headers=headers or {},
            timeout=aiohttp.ClientTimeout(total=timeout)
        ) as response:
            body = await response.text()

            if response.status == 429 or response.status >= 500:
                logger.warning("Vendor request failed, will retry", channel=channel, status=response.status)
                raise RetryableError(f"{channel} returned HTTP {response.status}: {body[:200]}")

            if response.status < 200 or response.status >= 300:
                logger.error("Vendor rejected request", channel=channel, status=response.status, error=body[:500])
                raise DeliveryError(channel, f"HTTP {response.status} - {body[:500]}", status_code=response.status)

            if not body.strip():
                return {"status": response.status}
            try:
                data = await response.json(content_type=None)
            except ValueError:
                return {"status": response.status, "text": body}
            if isinstance(data, dict):
                data.setdefault("status", response.status)
                return data
            return {"status": response.status, "data": data}


class EmailProvider:
    """Sends transactional email through Resend."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        sender: Optional[str] = None
    ):
        from .settings import settings

        config = settings.global_config
        self.api_key = api_key if api_key is not None else settings.get_secret("email_api_key", "resend")
        self.base_url = (base_url or config.email_base_url).rstrip("/")
        self.sender = sender or config.email_from

    async def send(
        self,
        to: List[str],
        subject: str,
        html: str,
        attachments: Optional[List[Dict[str, str]]] = None,
        cc: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """
        Send one email.

        Args:
            to: Recipient addresses
            subject: Subject line
            html: HTML body
            attachments: ``{filename, content}`` dicts with base64 content
            cc: Optional carbon-copy addresses

        Returns:
            Resend response, which carries the message ``id``
        """
        if not self.api_key:
            raise ConfigurationError("email", "Email API key not configured")

        payload: Dict[str, Any] = {
            "from": self.sender,
            "to": to,
            "subject": subject,
            "html": html,
        }
        if cc:
            payload["cc"] = cc
        if attachments:
            payload["attachments"] = attachments

        headers = {"Authorization": f"Bearer {self.api_key}"}
        result = await retry_manager.execute_with_retry(
            post_json, "email", "resend", {"to": to},
            "email", f"{self.base_url}/emails", payload, headers
        )
        logger.info("Email sent", recipients=len(to), attachments=len(attachments or []))
        return result


class SmsProvider:
    """Sends SMS through the Telnyx messaging API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_number: Optional[str] = None,
        base_url: Optional[str] = None
    ):
        from .settings import settings

        config = settings.global_config
        self.api_key = api_key if api_key is not None else settings.get_secret("sms_api_key", "telnyx")
        self.from_number = from_number if from_number is not None else settings.get_secret("sms_from_number", "telnyx", "from_number")
        self.base_url = (base_url or config.sms_base_url).rstrip("/")

    async def send(self, to: str, text: str) -> Dict[str, Any]:
        """
        Send a text message.

        Returns:
            ``{to, from, message_id}`` with the number normalized to E.164
        """
        if not self.api_key or not self.from_number:
            raise ConfigurationError("sms", "SMS credentials not configured")

        normalized = normalize_phone(to)
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = {"from": self.from_number, "to": normalized, "text": text}

        result = await retry_manager.execute_with_retry(
            post_json, "sms", "telnyx", {"to": normalized},
            "sms", f"{self.base_url}/v2/messages", payload, headers
        )
        message_id = (result.get("data") or {}).get("id") if isinstance(result.get("data"), dict) else None
        logger.info("SMS sent", to=normalized, message_id=message_id)
        return {"to": normalized, "from": self.from_number, "message_id": message_id}


class WebhookClient:
    """Posts automation payloads to external integrations."""

    async def post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST ``payload`` to ``url``; returns the receiver's status."""
        result = await retry_manager.execute_with_retry(
            post_json, "webhook", "webhook", {"url": url},
            "webhook", url, payload
        )
        return {"status": result.get("status", 200)}
