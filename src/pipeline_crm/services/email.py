"""Outbound email delivery used by the send_email action."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from pipeline_crm.config import EmailConfig
from pipeline_crm.errors import EmailSendError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    """Outbound email content."""

    to: str
    subject: str
    body: str


@dataclass(frozen=True)
class EmailResult:
    """Provider receipt for a sent email."""

    provider: str
    message_id: str


class EmailSender(Protocol):
    """Interface implemented by email providers."""

    def send(self, message: EmailMessage) -> EmailResult:
        """Send a message or raise EmailSendError."""
        ...


class DisabledEmailSender:
    """Sender used when no email provider is configured."""

    provider = "none"

    def send(self, message: EmailMessage) -> EmailResult:
        raise EmailSendError(
            "Email provider not configured. Set email.provider and email.endpoint_url."
        )


class HttpEmailSender:
    """Send email through an HTTP relay endpoint."""

    provider = "http"

    def __init__(
        self,
        endpoint_url: str,
        *,
        from_address: str = "",
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._from_address = from_address
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    def send(self, message: EmailMessage) -> EmailResult:
        """POST the message to the relay and return its message id."""
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        body = {
            "from": self._from_address,
            "to": message.to,
            "subject": message.subject,
            "body": message.body,
        }
        try:
            if self._client is not None:
                response = self._client.post(self._endpoint_url, json=body, headers=headers)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.post(self._endpoint_url, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            logger.warning("Email relay request failed: %s", exc)
            raise EmailSendError(f"Email relay request failed: {exc}") from exc
        except ValueError as exc:
            raise EmailSendError("Email relay returned invalid JSON") from exc
        message_id = (data.get("id") or data.get("message_id")) if isinstance(data, dict) else None
        if not message_id:
            raise EmailSendError("Email relay response missing message id")
        return EmailResult(provider=self.provider, message_id=str(message_id))


def build_email_sender(config: EmailConfig) -> EmailSender:
    """Return the sender for the configured provider."""
    if config.provider == "http":
        if not config.endpoint_url:
            logger.warning("email.provider is http but email.endpoint_url is empty")
            return DisabledEmailSender()
        return HttpEmailSender(
            config.endpoint_url,
            from_address=config.from_address,
            api_key=config.api_key,
            timeout=config.timeout,
        )
    return DisabledEmailSender()
