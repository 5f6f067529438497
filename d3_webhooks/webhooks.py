"""
D3 Webhook Processor

Stripe webhook processing: signature verification, event age check,
deduplication on the webhook_events table and routing to handlers.
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import PersistenceError, StoreError
from core.logging import get_logger
from core.utils import utcnow
from d2_checkout.stripe_client import StripeClient
from d5_fulfillment.fulfillment import FulfillmentService

from .models import WebhookEvent, WebhookStatus
from .webhook_handlers import CheckoutSessionHandler, DisputeHandler, PaymentIntentHandler

logger = logging.getLogger(__name__)

# A processing row older than this is assumed to belong to a crashed delivery
STALE_PROCESSING_AFTER = timedelta(minutes=10)


class WebhookEventType(Enum):
    """Stripe webhook event types we handle"""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"
    CHECKOUT_SESSION_ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
    CHECKOUT_SESSION_ASYNC_FAILED = "checkout.session.async_payment_failed"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    CHARGE_DISPUTE_CREATED = "charge.dispute.created"


class WebhookProcessor:
    """Main webhook processor for Stripe events"""

    def __init__(
        self,
        db: Session,
        stripe_client: StripeClient,
        fulfillment: Optional[FulfillmentService] = None,
        max_event_age_hours: int = 72,
    ):
        self.db = db
        self.stripe_client = stripe_client
        self.fulfillment = fulfillment
        self.max_event_age_hours = max_event_age_hours

    def is_event_too_old(self, event_timestamp: Optional[int]) -> bool:
        if not event_timestamp:
            return False
        event_time = datetime.fromtimestamp(event_timestamp, tz=timezone.utc)
        return datetime.now(timezone.utc) - event_time > timedelta(hours=self.max_event_age_hours)

    def process_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and process one delivery

        Raises:
            SignatureError: missing or invalid signature, nothing is written
            PersistenceError: a state change could not be stored; Stripe retries
        """
        # Step 1: verify signature and parse
        event = self.stripe_client.construct_webhook_event(payload, signature)
        event_id = event["event_id"]
        event_type = event["event_type"]

        event_log = get_logger(__name__).bind(stripe_event_id=event_id, event_type=event_type)
        event_log.info(f"Processing webhook event {event_id} of type {event_type}")

        # Step 2: check event age
        if self.is_event_too_old(event.get("created")):
            event_log.warning(f"Event {event_id} is too old, ignoring")
            return {"success": True, "event_id": event_id, "status": WebhookStatus.IGNORED.value, "reason": "Event too old"}

        # Step 3: claim the event id
        record = self._claim_event(event_id, event_type)
        if record is None:
            return {"success": True, "event_id": event_id, "status": WebhookStatus.IGNORED.value, "reason": "Duplicate event"}

        # Step 4: process
        try:
            result = self._process_event(event_type, event.get("data", {}), event_id)
        except StoreError as e:
            event_log.error(f"Event {event_id} failed: {e.message}")
            self._finish_event(record, WebhookStatus.FAILED, error=e.message)
            raise
        except Exception as e:
            event_log.exception(f"Unexpected error processing event {event_id}")
            self._finish_event(record, WebhookStatus.FAILED, error=str(e))
            raise

        self._finish_event(record, WebhookStatus(result["status"]))

        return {
            "success": result["success"],
            "event_id": event_id,
            "event_type": event_type,
            "status": result["status"],
            "reason": result.get("reason"),
            "data": result.get("data", {}),
        }

    def _process_event(self, event_type: str, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        """Route to the handler for the event type"""
        if event_type == WebhookEventType.CHECKOUT_SESSION_COMPLETED.value:
            return CheckoutSessionHandler(self.db, self.fulfillment).handle_session_completed(event_data, event_id)

        elif event_type == WebhookEventType.CHECKOUT_SESSION_ASYNC_SUCCEEDED.value:
            return CheckoutSessionHandler(self.db, self.fulfillment).handle_async_payment_succeeded(
                event_data, event_id
            )

        elif event_type == WebhookEventType.CHECKOUT_SESSION_ASYNC_FAILED.value:
            return CheckoutSessionHandler(self.db, self.fulfillment).handle_async_payment_failed(event_data, event_id)

        elif event_type == WebhookEventType.CHECKOUT_SESSION_EXPIRED.value:
            return CheckoutSessionHandler(self.db, self.fulfillment).handle_session_expired(event_data, event_id)

        elif event_type == WebhookEventType.PAYMENT_INTENT_SUCCEEDED.value:
            return PaymentIntentHandler(self.db, self.fulfillment).handle_payment_succeeded(event_data, event_id)

        elif event_type == WebhookEventType.PAYMENT_INTENT_FAILED.value:
            return PaymentIntentHandler(self.db, self.fulfillment).handle_payment_failed(event_data, event_id)

        elif event_type == WebhookEventType.CHARGE_DISPUTE_CREATED.value:
            return DisputeHandler(self.db).handle_dispute_created(event_data, event_id)

        logger.info(f"Unhandled event type: {event_type}")
        return {
            "success": True,
            "status": WebhookStatus.IGNORED.value,
            "reason": f"Unhandled event type: {event_type}",
        }

    def _claim_event(self, event_id: str, event_type: str) -> Optional[WebhookEvent]:
        """
        Insert or reclaim the dedup row for an event

        Returns None when the event is done or another delivery holds it.
        """
        try:
            record = self.db.query(WebhookEvent).filter(WebhookEvent.stripe_event_id == event_id).first()
            if record is not None:
                stale = record.updated_at and utcnow() - record.updated_at > STALE_PROCESSING_AFTER
                if record.status == WebhookStatus.FAILED or (record.status == WebhookStatus.PROCESSING and stale):
                    record.status = WebhookStatus.PROCESSING
                    record.retry_count = (record.retry_count or 0) + 1
                    record.error_message = None
                    self.db.commit()
                    logger.info(f"Retrying event {event_id} (attempt {record.retry_count + 1})")
                    return record

                logger.info(f"Duplicate event detected: {event_id} ({record.status.value})")
                return None

            record = WebhookEvent(stripe_event_id=event_id, event_type=event_type, status=WebhookStatus.PROCESSING)
            self.db.add(record)
            self.db.commit()
            return record
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Event {event_id} claimed by a concurrent delivery")
            return None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to record webhook event {event_id}: {e}")
            raise PersistenceError(f"Failed to record webhook event: {e}", operation="claim_event")

    def _finish_event(self, record: WebhookEvent, status: WebhookStatus, error: Optional[str] = None) -> None:
        try:
            record.status = status
            record.error_message = error
            record.processed_at = utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update webhook event {record.stripe_event_id}: {e}")
