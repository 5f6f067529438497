"""
SendGrid API Client

Sends transactional email through SendGrid's v3 mail endpoint.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from core.config import Settings
from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class SendGridResponse:
    """SendGrid API response data"""

    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    status_code: Optional[int] = None


@dataclass
class EmailData:
    """Email data structure for SendGrid"""

    to_email: str
    subject: str
    html_content: str
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    text_content: Optional[str] = None
    attachments: List[Dict[str, str]] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    custom_args: Dict[str, Any] = field(default_factory=dict)


class SendGridClient:
    """
    SendGrid API client for email delivery

    Owns one httpx.Client; call close() at shutdown.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.sendgrid.com",
        default_from_email: str = "noreply@financetransformers.com",
        default_from_name: str = "Finance Transformers",
        sandbox_mode: bool = False,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.default_from_email = default_from_email
        self.default_from_name = default_from_name
        self.sandbox_mode = sandbox_mode
        self.client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            headers=self._get_headers(),
            transport=transport,
        )
        logger.info(f"SendGrid client initialized (sandbox: {self.sandbox_mode})")

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> "SendGridClient":
        return cls(
            api_key=settings.sendgrid_api_key.get_secret_value() if settings.sendgrid_api_key else None,
            base_url=settings.sendgrid_base_url,
            default_from_email=settings.from_email,
            default_from_name=settings.from_name,
            sandbox_mode=settings.sendgrid_sandbox_mode,
            timeout=settings.request_timeout,
            transport=transport,
        )

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_payload(self, email_data: EmailData) -> Dict[str, Any]:
        """Build the v3 mail/send payload"""
        payload: Dict[str, Any] = {
            "personalizations": [{"to": [{"email": email_data.to_email}], "subject": email_data.subject}],
            "from": {
                "email": email_data.from_email or self.default_from_email,
                "name": email_data.from_name or self.default_from_name,
            },
            "content": [],
            "tracking_settings": {
                "click_tracking": {"enable": False, "enable_text": False},
                "open_tracking": {"enable": True},
                "subscription_tracking": {"enable": False},
            },
        }

        if email_data.text_content:
            payload["content"].append({"type": "text/plain", "value": email_data.text_content})
        payload["content"].append({"type": "text/html", "value": email_data.html_content})

        if email_data.attachments:
            payload["attachments"] = email_data.attachments

        if email_data.categories:
            payload["categories"] = list(dict.fromkeys(email_data.categories))[:10]

        if email_data.custom_args:
            payload["custom_args"] = {k: str(v) for k, v in email_data.custom_args.items()}

        if self.sandbox_mode:
            payload["mail_settings"] = {"sandbox_mode": {"enable": True}}

        return payload

    def send_email(self, email_data: EmailData) -> SendGridResponse:
        """
        Send email through SendGrid API

        Transport and API failures are reported in the response, not raised.

        Raises:
            ConfigurationError: no API key configured
        """
        if not self.api_key:
            raise ConfigurationError("SendGrid API key is not configured", setting="sendgrid_api_key")

        try:
            response = self.client.post("/v3/mail/send", json=self.build_payload(email_data))
        except httpx.HTTPError as e:
            logger.error(f"SendGrid request failed for {email_data.to_email}: {e}")
            return SendGridResponse(success=False, error_message=f"Request failed: {e}")

        if response.status_code >= 400:
            logger.error(f"SendGrid API error {response.status_code}: {response.text[:500]}")
            return SendGridResponse(
                success=False,
                error_message=response.text[:500] or f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        logger.info(f"Email sent successfully to {email_data.to_email}")
        return SendGridResponse(
            success=True,
            message_id=response.headers.get("X-Message-Id"),
            status_code=response.status_code,
        )

    def close(self) -> None:
        self.client.close()
