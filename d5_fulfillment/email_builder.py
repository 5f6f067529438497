"""Email builder for purchase confirmation emails."""
import base64
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape

from core.utils import safe_filename

CONFIRMATION_TEMPLATE = "purchase_confirmation.html"

CONFIRMATION_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Your PDF Purchase Confirmation</title>
  <style>
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background: #13B87B; color: white; padding: 20px; text-align: center; }
    .content { padding: 20px; background: #f9f9f9; }
    .footer { padding: 20px; text-align: center; color: #666; font-size: 12px; }
    .download-btn { display: inline-block; background: #13B87B; color: white; padding: 12px 24px;
                    text-decoration: none; border-radius: 5px; margin: 20px 0; }
    .order-details { background: white; padding: 15px; border-radius: 5px; margin: 20px 0; }
  </style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>Thank You for Your Purchase!</h1>
    </div>
    <div class="content">
      <h2>Your PDF is Ready</h2>
      <p>Hi there!</p>
      <p>Thank you for purchasing <strong>{{ pdf_title }}</strong>.</p>

      <div class="order-details">
        <h3>Order Details</h3>
        <p><strong>PDF:</strong> {{ pdf_title }}</p>
        <p><strong>Amount:</strong> {{ amount }} {{ currency }}</p>
        <p><strong>Order ID:</strong> {{ order_id }}</p>
        <p><strong>Email:</strong> {{ customer_email }}</p>
      </div>

      {% if download_url %}
      <div style="text-align: center;">
        <a href="{{ download_url }}" class="download-btn">Download Your PDF</a>
      </div>
      <p><em>Download link expires in {{ link_ttl_hours }} hours for security.</em></p>
      {% else %}
      <p><strong>Your PDF is attached to this email.</strong></p>
      {% endif %}

      <h3>What's Next?</h3>
      <ul>
        <li>Save this email for your records</li>
        <li>Download and save your PDF to your device</li>
        <li>Need help? Just reply to this email</li>
      </ul>
      <p>We hope you find the content valuable! If you have any questions, don't hesitate to reach out.</p>
    </div>
    <div class="footer">
      <p>This email was sent regarding your purchase from {{ store_name }}.</p>
      <p>If you didn't make this purchase, please contact us immediately.</p>
      <p>&copy; {{ year }} {{ store_name }}. All rights reserved.</p>
    </div>
  </div>
</body>
</html>
"""

_environment = Environment(
    loader=DictLoader({CONFIRMATION_TEMPLATE: CONFIRMATION_HTML}),
    autoescape=select_autoescape(["html"]),
    undefined=StrictUndefined,
)


@dataclass
class ConfirmationEmailData:
    """Data structure for a purchase confirmation"""

    customer_email: str
    pdf_title: str
    order_id: str
    amount: Union[Decimal, float, int] = 0
    currency: str = "EUR"
    download_url: Optional[str] = None
    pdf_content: Optional[str] = None  # base64 encoded PDF


def format_amount(amount: Union[Decimal, float, int, None]) -> str:
    return f"{Decimal(str(amount or 0)):.2f}"


def build_pdf_attachment(pdf_title: str, pdf_content: Union[str, bytes]) -> Dict[str, str]:
    """SendGrid attachment entry; raw bytes are base64 encoded here"""
    if isinstance(pdf_content, bytes):
        pdf_content = base64.b64encode(pdf_content).decode("ascii")
    return {
        "content": pdf_content,
        "filename": safe_filename(pdf_title),
        "type": "application/pdf",
        "disposition": "attachment",
    }


def build_confirmation_email(
    data: ConfirmationEmailData,
    store_name: str = "Finance Transformers",
    link_ttl_hours: int = 48,
) -> Dict[str, Any]:
    """
    Render the confirmation email

    Returns:
        dict with subject, html_content and attachments
    """
    template = _environment.get_template(CONFIRMATION_TEMPLATE)
    html = template.render(
        pdf_title=data.pdf_title,
        customer_email=data.customer_email,
        order_id=data.order_id,
        amount=format_amount(data.amount),
        currency=(data.currency or "EUR").upper(),
        download_url=data.download_url,
        link_ttl_hours=link_ttl_hours,
        store_name=store_name,
        year=datetime.now(timezone.utc).year,
    )

    attachments: List[Dict[str, str]] = []
    if data.pdf_content:
        attachments.append(build_pdf_attachment(data.pdf_title, data.pdf_content))

    return {
        "subject": f"Your {data.pdf_title} is Ready for Download",
        "html_content": html,
        "attachments": attachments,
    }
