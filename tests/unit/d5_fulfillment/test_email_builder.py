"""
Tests for confirmation email rendering
"""

import base64
from decimal import Decimal

from d5_fulfillment.email_builder import (ConfirmationEmailData, build_confirmation_email, build_pdf_attachment,
                                          format_amount)


def make_data(**overrides):
    values = {
        "customer_email": "buyer@example.com",
        "pdf_title": "Market Outlook 2025",
        "order_id": "cs_test_abc",
        "amount": Decimal("9.99"),
        "currency": "eur",
        "download_url": "https://store.financetransformers.test/api/v1/download/abc123",
    }
    values.update(overrides)
    return ConfirmationEmailData(**values)


def test_subject_and_body():
    email = build_confirmation_email(make_data())

    assert email["subject"] == "Your Market Outlook 2025 is Ready for Download"
    html = email["html_content"]
    assert "<strong>Market Outlook 2025</strong>" in html
    assert "9.99 EUR" in html
    assert "cs_test_abc" in html
    assert 'href="https://store.financetransformers.test/api/v1/download/abc123"' in html
    assert "expires in 48 hours" in html
    assert email["attachments"] == []


def test_link_ttl_and_store_name():
    html = build_confirmation_email(make_data(), store_name="FT Reports", link_ttl_hours=24)["html_content"]

    assert "expires in 24 hours" in html
    assert "FT Reports. All rights reserved." in html


def test_title_is_escaped():
    email = build_confirmation_email(make_data(pdf_title="Bonds <script>alert(1)</script>"))

    assert "<script>" not in email["html_content"]
    assert "&lt;script&gt;" in email["html_content"]


def test_attachment_without_download_link():
    content = base64.b64encode(b"%PDF-1.4").decode("ascii")

    email = build_confirmation_email(make_data(download_url=None, pdf_content=content))

    assert "Your PDF is attached to this email." in email["html_content"]
    assert email["attachments"] == [
        {
            "content": content,
            "filename": "Market_Outlook_2025.pdf",
            "type": "application/pdf",
            "disposition": "attachment",
        }
    ]


def test_attachment_from_bytes_is_base64_encoded():
    attachment = build_pdf_attachment("Market Outlook 2025", b"%PDF-1.4")

    assert attachment["content"] == base64.b64encode(b"%PDF-1.4").decode("ascii")
    assert attachment["filename"] == "Market_Outlook_2025.pdf"


def test_format_amount():
    assert format_amount(Decimal("9.9")) == "9.90"
    assert format_amount(12) == "12.00"
    assert format_amount(None) == "0.00"
