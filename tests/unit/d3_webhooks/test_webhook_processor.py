"""
Tests for Stripe webhook processing

Covers signature checks, event age, replay protection, every routed event
type and the fulfillment side effects of completing a purchase.
"""

import time
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from core.exceptions import PersistenceError, SignatureError
from core.utils import utcnow
from d2_checkout.models import Purchase, PurchaseStatus, StripeCustomer
from d3_webhooks.models import WebhookEvent, WebhookStatus
from d3_webhooks.webhook_handlers import BaseWebhookHandler
from d4_downloads.models import DownloadToken


def session_object(purchase=None, **overrides):
    obj = {
        "id": purchase.stripe_checkout_session_id if purchase else "cs_test_link",
        "object": "checkout.session",
        "payment_status": "paid",
        "payment_intent": "pi_123",
        "amount_total": 999,
        "currency": "eur",
        "customer_details": {"email": "buyer@example.com"},
        "metadata": {"purchase_id": purchase.id, "pdf_id": purchase.pdf_id} if purchase else {},
    }
    obj.update(overrides)
    return obj


@pytest.fixture
def processor(services, db_session):
    return services.webhook_processor(db_session)


@pytest.fixture
def pending_purchase(make_pdf, make_purchase):
    pdf = make_pdf(price=Decimal("9.99"), currency="EUR")
    return make_purchase(pdf, stripe_checkout_session_id="cs_test_abc")


def tokens_for(db_session, purchase):
    return db_session.query(DownloadToken).filter_by(purchase_id=purchase.id).all()


class TestVerificationAndDedup:
    def test_missing_signature(self, processor, db_session):
        with pytest.raises(SignatureError):
            processor.process_webhook(b'{"id": "evt_1"}', None)
        assert db_session.query(WebhookEvent).count() == 0

    def test_invalid_signature(self, processor, db_session, pending_purchase, stripe_event):
        payload, _ = stripe_event("checkout.session.completed", session_object(pending_purchase))

        with pytest.raises(SignatureError):
            processor.process_webhook(payload, "t=123,v1=deadbeef")

        db_session.expire_all()
        assert pending_purchase.status == PurchaseStatus.PENDING
        assert db_session.query(WebhookEvent).count() == 0

    def test_old_event_ignored(self, processor, db_session, pending_purchase, stripe_event):
        created = int(time.time()) - 73 * 3600
        payload, signature = stripe_event("checkout.session.completed", session_object(pending_purchase), created=created)

        result = processor.process_webhook(payload, signature)

        assert result["status"] == "ignored"
        assert result["reason"] == "Event too old"
        db_session.expire_all()
        assert pending_purchase.status == PurchaseStatus.PENDING

    def test_replay_fulfills_once(self, processor, db_session, pending_purchase, stripe_event, mail_outbox):
        payload, signature = stripe_event(
            "checkout.session.completed", session_object(pending_purchase), event_id="evt_replay"
        )

        first = processor.process_webhook(payload, signature)
        second = processor.process_webhook(payload, signature)

        assert first["status"] == "completed"
        assert second["status"] == "ignored"
        assert second["reason"] == "Duplicate event"
        assert len(tokens_for(db_session, pending_purchase)) == 1
        assert mail_outbox.sent == 1

        record = db_session.query(WebhookEvent).filter_by(stripe_event_id="evt_replay").one()
        assert record.status == WebhookStatus.COMPLETED
        assert record.processed_at is not None

    def test_second_event_for_completed_purchase_is_noop(
        self, processor, db_session, pending_purchase, stripe_event, mail_outbox
    ):
        processor.process_webhook(*stripe_event("checkout.session.completed", session_object(pending_purchase)))
        result = processor.process_webhook(
            *stripe_event("checkout.session.async_payment_succeeded", session_object(pending_purchase))
        )

        assert result["status"] == "ignored"
        assert result["reason"] == "Purchase already completed"
        assert len(tokens_for(db_session, pending_purchase)) == 1
        assert mail_outbox.sent == 1

    def test_failed_event_is_reprocessed(self, processor, db_session, pending_purchase, stripe_event):
        payload, signature = stripe_event(
            "checkout.session.completed", session_object(pending_purchase), event_id="evt_retry"
        )

        with patch.object(
            BaseWebhookHandler, "_complete", side_effect=PersistenceError("database is locked", operation="complete")
        ):
            with pytest.raises(PersistenceError):
                processor.process_webhook(payload, signature)

        record = db_session.query(WebhookEvent).filter_by(stripe_event_id="evt_retry").one()
        assert record.status == WebhookStatus.FAILED
        assert record.error_message == "database is locked"

        result = processor.process_webhook(payload, signature)

        assert result["status"] == "completed"
        db_session.expire_all()
        assert record.status == WebhookStatus.COMPLETED
        assert record.retry_count == 1
        assert pending_purchase.status == PurchaseStatus.COMPLETED

    def test_in_flight_event_is_not_reclaimed(self, processor, db_session, pending_purchase, stripe_event):
        db_session.add(
            WebhookEvent(stripe_event_id="evt_busy", event_type="checkout.session.completed", status=WebhookStatus.PROCESSING)
        )
        db_session.commit()
        payload, signature = stripe_event(
            "checkout.session.completed", session_object(pending_purchase), event_id="evt_busy"
        )

        result = processor.process_webhook(payload, signature)

        assert result["reason"] == "Duplicate event"
        db_session.expire_all()
        assert pending_purchase.status == PurchaseStatus.PENDING

    def test_stale_processing_event_is_reclaimed(self, processor, db_session, pending_purchase, stripe_event):
        long_ago = utcnow() - timedelta(hours=1)
        db_session.add(
            WebhookEvent(
                stripe_event_id="evt_stuck",
                event_type="checkout.session.completed",
                status=WebhookStatus.PROCESSING,
                created_at=long_ago,
                updated_at=long_ago,
            )
        )
        db_session.commit()
        payload, signature = stripe_event(
            "checkout.session.completed", session_object(pending_purchase), event_id="evt_stuck"
        )

        assert processor.process_webhook(payload, signature)["status"] == "completed"


class TestCheckoutSessionEvents:
    def test_completed(self, processor, db_session, pending_purchase, stripe_event, mail_outbox, settings):
        result = processor.process_webhook(
            *stripe_event("checkout.session.completed", session_object(pending_purchase, amount_total=999))
        )

        assert result["success"] is True
        assert result["event_type"] == "checkout.session.completed"
        assert result["status"] == "completed"

        db_session.expire_all()
        purchase = db_session.get(Purchase, pending_purchase.id)
        assert purchase.status == PurchaseStatus.COMPLETED
        assert purchase.amount_paid == Decimal("9.99")
        assert purchase.currency == "EUR"
        assert purchase.stripe_payment_intent_id == "pi_123"
        assert purchase.purchased_at is not None
        assert purchase.email_sent_at is not None
        assert purchase.fulfillment_error is None

        tokens = tokens_for(db_session, purchase)
        assert len(tokens) == 1
        assert tokens[0].max_downloads == 5

        assert mail_outbox.sent == 1
        email = mail_outbox.payloads[0]
        assert email["personalizations"][0]["to"] == [{"email": "buyer@example.com"}]
        assert email["personalizations"][0]["subject"] == "Your Market Outlook 2025 is Ready for Download"
        html = email["content"][-1]["value"]
        assert f"{settings.base_url}/api/v1/download/{tokens[0].token}" in html
        assert "9.99 EUR" in html

    def test_confirmation_goes_to_email_captured_at_checkout(
        self, processor, db_session, make_pdf, make_purchase, stripe_event, mail_outbox
    ):
        db_session.add(StripeCustomer(user_id="u1", stripe_customer_id="cus_u1", email=None))
        db_session.commit()
        purchase = make_purchase(make_pdf(), user_id="u1", customer_email=None)
        obj = session_object(purchase, customer_details={"email": "captured@example.com"})

        processor.process_webhook(*stripe_event("checkout.session.completed", obj))

        db_session.expire_all()
        assert purchase.status == PurchaseStatus.COMPLETED
        assert purchase.customer_email == "captured@example.com"
        assert purchase.fulfillment_error is None
        assert mail_outbox.sent == 1
        assert mail_outbox.payloads[0]["personalizations"][0]["to"] == [{"email": "captured@example.com"}]

    def test_session_customer_email_is_used_without_customer_details(
        self, processor, db_session, make_pdf, make_purchase, stripe_event, mail_outbox
    ):
        purchase = make_purchase(make_pdf(), customer_email=None)
        obj = session_object(purchase, customer_details=None, customer_email="prefilled@example.com")

        processor.process_webhook(*stripe_event("checkout.session.completed", obj))

        assert mail_outbox.payloads[0]["personalizations"][0]["to"] == [{"email": "prefilled@example.com"}]

    def test_captured_email_kept_while_payment_is_processing(
        self, processor, db_session, make_pdf, make_purchase, stripe_event, mail_outbox
    ):
        purchase = make_purchase(make_pdf(), customer_email=None)
        unpaid = session_object(purchase, payment_status="unpaid", customer_details={"email": "sepa@example.com"})

        processor.process_webhook(*stripe_event("checkout.session.completed", unpaid))

        db_session.expire_all()
        assert purchase.customer_email == "sepa@example.com"

        succeeded = session_object(purchase, customer_details=None)
        processor.process_webhook(*stripe_event("checkout.session.async_payment_succeeded", succeeded))

        assert mail_outbox.payloads[0]["personalizations"][0]["to"] == [{"email": "sepa@example.com"}]

    def test_existing_customer_email_is_not_overwritten(
        self, processor, db_session, pending_purchase, stripe_event, mail_outbox
    ):
        obj = session_object(pending_purchase, customer_details={"email": "other@example.com"})

        processor.process_webhook(*stripe_event("checkout.session.completed", obj))

        db_session.expire_all()
        assert pending_purchase.customer_email == "buyer@example.com"
        assert mail_outbox.payloads[0]["personalizations"][0]["to"] == [{"email": "buyer@example.com"}]

    def test_found_by_metadata_when_session_id_unknown(self, processor, db_session, make_pdf, make_purchase, stripe_event):
        purchase = make_purchase(make_pdf(), stripe_checkout_session_id=None)
        obj = session_object(purchase, id="cs_test_unrecorded")

        assert processor.process_webhook(*stripe_event("checkout.session.completed", obj))["status"] == "completed"

        db_session.expire_all()
        assert purchase.status == PurchaseStatus.COMPLETED
        assert purchase.stripe_checkout_session_id == "cs_test_unrecorded"

    def test_unpaid_session_waits_for_async_payment(
        self, processor, db_session, pending_purchase, stripe_event, mail_outbox
    ):
        result = processor.process_webhook(
            *stripe_event("checkout.session.completed", session_object(pending_purchase, payment_status="unpaid"))
        )

        assert result["status"] == "ignored"
        db_session.expire_all()
        assert pending_purchase.status == PurchaseStatus.PENDING
        assert pending_purchase.stripe_payment_intent_id == "pi_123"
        assert mail_outbox.sent == 0

        result = processor.process_webhook(
            *stripe_event("checkout.session.async_payment_succeeded", session_object(pending_purchase))
        )

        assert result["status"] == "completed"
        db_session.expire_all()
        assert pending_purchase.status == PurchaseStatus.COMPLETED
        assert mail_outbox.sent == 1

    def test_async_payment_failed(self, processor, db_session, pending_purchase, stripe_event, mail_outbox):
        processor.process_webhook(
            *stripe_event("checkout.session.async_payment_failed", session_object(pending_purchase))
        )

        db_session.expire_all()
        assert pending_purchase.status == PurchaseStatus.FAILED
        assert tokens_for(db_session, pending_purchase) == []
        assert mail_outbox.sent == 0

    def test_expired_session_fails_purchase(self, processor, db_session, pending_purchase, stripe_event):
        result = processor.process_webhook(*stripe_event("checkout.session.expired", session_object(pending_purchase)))

        assert result["status"] == "completed"
        db_session.expire_all()
        assert pending_purchase.status == PurchaseStatus.FAILED

    def test_expired_after_completion_is_ignored(self, processor, db_session, pending_purchase, stripe_event):
        processor.process_webhook(*stripe_event("checkout.session.completed", session_object(pending_purchase)))
        result = processor.process_webhook(*stripe_event("checkout.session.expired", session_object(pending_purchase)))

        assert result["status"] == "ignored"
        db_session.expire_all()
        assert pending_purchase.status == PurchaseStatus.COMPLETED

    def test_failed_purchase_never_completes(self, processor, db_session, pending_purchase, stripe_event, mail_outbox):
        processor.process_webhook(*stripe_event("checkout.session.expired", session_object(pending_purchase)))
        result = processor.process_webhook(*stripe_event("checkout.session.completed", session_object(pending_purchase)))

        assert result["status"] == "ignored"
        db_session.expire_all()
        assert pending_purchase.status == PurchaseStatus.FAILED
        assert mail_outbox.sent == 0

    def test_unknown_purchase_is_ignored(self, processor, stripe_event):
        obj = session_object(None, id="cs_test_unknown")
        result = processor.process_webhook(*stripe_event("checkout.session.completed", obj))

        assert result["status"] == "ignored"
        assert result["reason"] == "Purchase not found"

    def test_payment_link_session_creates_purchase(self, processor, db_session, make_pdf, stripe_event, mail_outbox):
        pdf = make_pdf(stripe_payment_link_id="plink_123", stripe_payment_link_url="https://buy.stripe.com/test_123")
        obj = session_object(
            None,
            id="cs_test_link",
            payment_link="plink_123",
            customer_details={"email": "listener@example.com"},
            amount_total=999,
        )

        result = processor.process_webhook(*stripe_event("checkout.session.completed", obj))

        assert result["status"] == "completed"
        purchase = db_session.query(Purchase).filter_by(stripe_checkout_session_id="cs_test_link").one()
        assert purchase.pdf_id == pdf.id
        assert purchase.customer_email == "listener@example.com"
        assert purchase.user_id is None
        assert purchase.status == PurchaseStatus.COMPLETED
        assert mail_outbox.payloads[0]["personalizations"][0]["to"] == [{"email": "listener@example.com"}]

    def test_payment_link_session_found_by_pdf_metadata(self, processor, db_session, make_pdf, stripe_event):
        pdf = make_pdf()
        obj = session_object(None, id="cs_test_meta", metadata={"pdf_id": pdf.id})

        processor.process_webhook(*stripe_event("checkout.session.completed", obj))

        purchase = db_session.query(Purchase).filter_by(stripe_checkout_session_id="cs_test_meta").one()
        assert purchase.pdf_id == pdf.id

    def test_second_completed_purchase_of_same_pdf_is_not_fulfilled(
        self, processor, db_session, make_pdf, make_purchase, stripe_event, mail_outbox
    ):
        pdf = make_pdf()
        first = make_purchase(pdf, user_id="user_123")
        second = make_purchase(pdf, user_id="user_123")

        processor.process_webhook(*stripe_event("checkout.session.completed", session_object(first)))
        result = processor.process_webhook(*stripe_event("checkout.session.completed", session_object(second)))

        assert result["status"] == "ignored"
        assert result["reason"] == "Duplicate completed purchase"
        db_session.expire_all()
        assert first.status == PurchaseStatus.COMPLETED
        assert second.status == PurchaseStatus.PENDING
        assert mail_outbox.sent == 1


class TestFulfillmentFailures:
    def test_email_failure_keeps_purchase_completed(
        self, processor, db_session, pending_purchase, stripe_event, mail_outbox
    ):
        mail_outbox.status_code = 500

        result = processor.process_webhook(
            *stripe_event("checkout.session.completed", session_object(pending_purchase))
        )

        assert result["status"] == "completed"
        assert result["data"]["fulfillment"]["email_sent"] is False
        db_session.expire_all()
        assert pending_purchase.status == PurchaseStatus.COMPLETED
        assert pending_purchase.email_sent_at is None
        assert pending_purchase.fulfillment_error.startswith("email:")
        assert len(tokens_for(db_session, pending_purchase)) == 1
        assert mail_outbox.sent == 1


class TestPaymentIntentEvents:
    def test_payment_intent_succeeded(self, processor, db_session, pending_purchase, stripe_event, mail_outbox):
        intent = {
            "id": "pi_456",
            "object": "payment_intent",
            "amount": 999,
            "amount_received": 999,
            "currency": "eur",
            "metadata": {"purchase_id": pending_purchase.id},
        }

        result = processor.process_webhook(*stripe_event("payment_intent.succeeded", intent))

        assert result["status"] == "completed"
        db_session.expire_all()
        assert pending_purchase.status == PurchaseStatus.COMPLETED
        assert pending_purchase.stripe_payment_intent_id == "pi_456"
        assert mail_outbox.sent == 1

    def test_payment_intent_failed(self, processor, db_session, make_pdf, make_purchase, stripe_event):
        purchase = make_purchase(make_pdf(), stripe_payment_intent_id="pi_789")
        intent = {"id": "pi_789", "last_payment_error": {"message": "Your card was declined."}, "metadata": {}}

        processor.process_webhook(*stripe_event("payment_intent.payment_failed", intent))

        db_session.expire_all()
        assert purchase.status == PurchaseStatus.FAILED


class TestOtherEvents:
    def test_dispute_is_logged_only(self, processor, db_session, make_pdf, make_purchase, stripe_event, caplog):
        purchase = make_purchase(make_pdf(), status=PurchaseStatus.COMPLETED, stripe_payment_intent_id="pi_123")
        dispute = {"id": "dp_1", "charge": "ch_1", "payment_intent": "pi_123", "amount": 999, "reason": "fraudulent"}

        with caplog.at_level("WARNING"):
            result = processor.process_webhook(*stripe_event("charge.dispute.created", dispute))

        assert result["status"] == "completed"
        assert "manual review required" in caplog.text
        db_session.expire_all()
        assert purchase.status == PurchaseStatus.COMPLETED

    def test_unhandled_event_type(self, processor, db_session, stripe_event):
        result = processor.process_webhook(*stripe_event("customer.created", {"id": "cus_1"}, event_id="evt_other"))

        assert result["status"] == "ignored"
        record = db_session.query(WebhookEvent).filter_by(stripe_event_id="evt_other").one()
        assert record.status == WebhookStatus.IGNORED

