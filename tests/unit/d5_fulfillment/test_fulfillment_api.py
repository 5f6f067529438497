"""
Tests for the email delivery and resend endpoints
"""

import pytest

from core.utils import utcnow
from d2_checkout.models import PurchaseStatus

pytestmark = [pytest.mark.integration]


def delivery_body(**overrides):
    body = {
        "customerEmail": "buyer@example.com",
        "pdfTitle": "Market Outlook 2025",
        "orderId": "cs_test_abc",
        "amount": 9.99,
        "currency": "EUR",
        "downloadUrl": "https://store.financetransformers.test/api/v1/download/abc123",
    }
    body.update(overrides)
    return body


class TestEmailDelivery:
    def test_sends_email(self, client, mail_outbox):
        response = client.post("/api/v1/email-delivery", json=delivery_body())

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Email sent successfully"}
        assert mail_outbox.payloads[0]["personalizations"][0]["to"] == [{"email": "buyer@example.com"}]

    def test_missing_fields(self, client, mail_outbox):
        response = client.post("/api/v1/email-delivery", json=delivery_body(pdfTitle=None))

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"
        assert mail_outbox.sent == 0

    def test_provider_failure(self, client, mail_outbox):
        mail_outbox.status_code = 500

        response = client.post("/api/v1/email-delivery", json=delivery_body())

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to send email"
        assert mail_outbox.sent == 1


class TestResendEmail:
    def test_resends(self, client, make_pdf, make_purchase, mail_outbox):
        purchase = make_purchase(make_pdf(), status=PurchaseStatus.COMPLETED, purchased_at=utcnow())

        response = client.post("/api/v1/resend-email", json={"sessionId": purchase.stripe_checkout_session_id})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Email resent successfully"}
        assert mail_outbox.sent == 1

    def test_missing_session_id(self, client):
        response = client.post("/api/v1/resend-email", json={})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing sessionId"

    def test_unknown_session(self, client):
        response = client.post("/api/v1/resend-email", json={"sessionId": "cs_test_unknown"})

        assert response.status_code == 404
        assert response.json() == {"error": "Purchase record not found", "details": "cs_test_unknown"}

    def test_pending_purchase(self, client, make_pdf, make_purchase):
        purchase = make_purchase(make_pdf())

        response = client.post("/api/v1/resend-email", json={"sessionId": purchase.stripe_checkout_session_id})

        assert response.status_code == 400
        assert response.json()["error"] == "Purchase is not completed"
