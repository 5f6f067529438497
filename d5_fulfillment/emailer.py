"""
Fulfillment Emailer

Renders and sends the purchase confirmation email. A failed send is reported
once and never retried here.
"""

import logging
from typing import Optional

from core.exceptions import EmailDeliveryError, ValidationError

from .email_builder import ConfirmationEmailData, build_confirmation_email
from .sendgrid_client import EmailData, SendGridClient, SendGridResponse

logger = logging.getLogger(__name__)


class FulfillmentEmailer:
    """Sends confirmation emails through SendGrid"""

    def __init__(self, mail_client: SendGridClient, store_name: str = "Finance Transformers", link_ttl_hours: int = 48):
        self.mail_client = mail_client
        self.store_name = store_name
        self.link_ttl_hours = link_ttl_hours

    def send_confirmation(self, data: ConfirmationEmailData, purchase_id: Optional[str] = None) -> SendGridResponse:
        """
        Send one confirmation email

        Raises:
            ValidationError: email, title or order id missing
            EmailDeliveryError: SendGrid rejected the message or was unreachable
        """
        if not data.customer_email or not data.pdf_title or not data.order_id:
            raise ValidationError(
                "Missing required fields", details="customerEmail, pdfTitle and orderId are required"
            )

        rendered = build_confirmation_email(data, store_name=self.store_name, link_ttl_hours=self.link_ttl_hours)
        email = EmailData(
            to_email=data.customer_email,
            subject=rendered["subject"],
            html_content=rendered["html_content"],
            attachments=rendered["attachments"],
            categories=["purchase_confirmation"],
            custom_args={"order_id": data.order_id, "purchase_id": purchase_id or ""},
        )

        response = self.mail_client.send_email(email)
        if not response.success:
            logger.error(f"Confirmation email for order {data.order_id} failed: {response.error_message}")
            raise EmailDeliveryError(
                "Failed to send email",
                email=data.customer_email,
                reason=response.error_message,
            )

        logger.info(f"Sent confirmation email for order {data.order_id}")
        return response
