"""
Sunny - Outbound SMS and email transport.

SMS goes through the Twilio REST API and email through the Resend REST API,
both over httpx. When a channel's credentials are missing the send is
skipped and logged, which keeps local development usable without accounts.
"""

import logging
import os
from dataclasses import dataclass
from html import escape
from typing import Optional

import httpx

from .exceptions import MessagingError

logger = logging.getLogger("sunny.messaging")

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"
RESEND_API_URL = "https://api.resend.com"


@dataclass
class MessagingConfig:
    """Credentials for the outbound transports."""

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    resend_api_key: Optional[str] = None
    resend_from_email: Optional[str] = None
    timeout: float = 15.0

    @classmethod
    def from_env(cls) -> "MessagingConfig":
        return cls(
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
            twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER"),
            resend_api_key=os.getenv("RESEND_API_KEY"),
            resend_from_email=os.getenv("RESEND_FROM_EMAIL"),
        )

    @property
    def sms_configured(self) -> bool:
        return bool(
            self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number
        )

    @property
    def email_configured(self) -> bool:
        return bool(self.resend_api_key and self.resend_from_email)


def body_to_html(body: str) -> str:
    """Wrap each line of a plain-text body in a paragraph."""
    return "".join(
        f'<p style="margin: 0 0 12px;">{escape(line)}</p>' for line in body.split("\n")
    )


class Messenger:
    """Sends SMS and email for the assistant's messaging tools."""

    def __init__(
        self,
        config: Optional[MessagingConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config or MessagingConfig.from_env()
        self._client = http_client

    async def _post(self, url: str, channel: str, **kwargs) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.post(url, timeout=self.config.timeout, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                    response = await client.post(url, **kwargs)
        except httpx.HTTPError as e:
            raise MessagingError(f"{channel} delivery failed: {e}", channel=channel) from e

        if response.status_code >= 400:
            logger.error("%s provider returned %s: %s", channel, response.status_code, response.text[:300])
            raise MessagingError(
                f"{channel} delivery failed with status {response.status_code}",
                channel=channel,
                status_code=response.status_code,
            )
        return response

    async def send_sms(self, to: str, body: str) -> bool:
        """Send an SMS. Returns False when SMS is not configured."""
        if not self.config.sms_configured:
            logger.info("[SMS Skipped] Would send to %s: %s", to, body[:50])
            return False

        url = f"{TWILIO_API_URL}/Accounts/{self.config.twilio_account_sid}/Messages.json"
        await self._post(
            url,
            "sms",
            data={"From": self.config.twilio_phone_number, "To": to, "Body": body},
            auth=(self.config.twilio_account_sid, self.config.twilio_auth_token),
        )
        logger.info("SMS sent to %s", to)
        return True

    async def send_email(self, to: str, subject: str, body: str) -> bool:
        """Send an email. Returns False when email is not configured."""
        if not self.config.email_configured:
            logger.info("[Email Skipped] Would send to %s: %s", to, subject)
            return False

        await self._post(
            f"{RESEND_API_URL}/emails",
            "email",
            json={
                "from": self.config.resend_from_email,
                "to": to,
                "subject": subject,
                "html": body_to_html(body),
            },
            headers={"Authorization": f"Bearer {self.config.resend_api_key}"},
        )
        logger.info("Email sent to %s", to)
        return True

    async def send(
        self, channel: str, to: str, body: str, subject: Optional[str] = None
    ) -> bool:
        if channel == "sms":
            return await self.send_sms(to, body)
        if channel == "email":
            return await self.send_email(to, subject or "", body)
        raise MessagingError(f"Unsupported channel: {channel}", channel=channel)
