"""
D5 Fulfillment

Confirmation email rendering and delivery through SendGrid.
"""

from .email_builder import ConfirmationEmailData, build_confirmation_email
from .emailer import FulfillmentEmailer
from .fulfillment import FulfillmentService
from .sendgrid_client import EmailData, SendGridClient, SendGridResponse

__all__ = [
    "ConfirmationEmailData",
    "EmailData",
    "FulfillmentEmailer",
    "FulfillmentService",
    "SendGridClient",
    "SendGridResponse",
    "build_confirmation_email",
]
