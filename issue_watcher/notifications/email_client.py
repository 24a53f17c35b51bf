"""
Transactional email delivery over the Sendamatic HTTP API.

``send`` never raises for delivery problems; it returns a SendResult and
leaves retry policy to the caller.
"""

from dataclasses import dataclass
from typing import List, Optional, Union

import httpx

from issue_watcher.config import get_settings
from issue_watcher.logging import email_logger as logger


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.email_api_key
        self.api_url = api_url or settings.email_api_url
        self.sender = sender or settings.email_from
        self.timeout = timeout or settings.email_timeout_seconds
        self._transport = transport

    def send(
        self,
        to: Union[str, List[str]],
        subject: str,
        html: str,
        text: Optional[str] = None,
    ) -> SendResult:
        if not self.api_key:
            return SendResult(success=False, error="EMAIL_API_KEY is not configured")

        recipients = to if isinstance(to, list) else [to]
        payload = {
            "to": recipients,
            "sender": self.sender,
            "subject": subject,
            "html_body": html,
            "text_body": text,
        }
        headers = {"x-api-key": self.api_key, "Content-Type": "application/json"}

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("email_transport_error", subject=subject, error=str(e))
            return SendResult(success=False, error=str(e))

        if response.status_code >= 400:
            try:
                detail = response.json().get("message", "Unknown error")
            except ValueError:
                detail = response.text[:200] or "Unknown error"
            error = f"Sendamatic API error: {response.status_code} - {detail}"
            logger.error("email_api_error", subject=subject, status=response.status_code, error=detail)
            return SendResult(success=False, error=error)

        try:
            body = response.json()
        except ValueError:
            body = {}
        message_id = (body.get("id") or body.get("messageId")) if isinstance(body, dict) else None
        logger.info("email_sent", subject=subject, recipients=len(recipients), message_id=message_id)
        return SendResult(success=True, message_id=message_id)
