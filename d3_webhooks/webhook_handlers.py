"""
D3 Webhook Handlers

Handlers for the Stripe events that move purchases through their lifecycle:
checkout sessions, payment intents and disputes.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import PersistenceError
from core.utils import from_minor_units, utcnow
from d1_catalog.catalog import PdfCatalog
from d1_catalog.models import CatalogItem
from d2_checkout.models import Purchase, PurchaseStatus
from d5_fulfillment.fulfillment import FulfillmentService

from .models import WebhookStatus

logger = logging.getLogger(__name__)


def _ignored(reason: str, **data) -> Dict[str, Any]:
    return {"success": True, "status": WebhookStatus.IGNORED.value, "reason": reason, "data": data}


def _handled(**data) -> Dict[str, Any]:
    return {"success": True, "status": WebhookStatus.COMPLETED.value, "data": data}


def captured_email(session: Dict[str, Any]) -> Optional[str]:
    """Email Stripe collected at checkout"""
    customer_details = session.get("customer_details") or {}
    return customer_details.get("email") or session.get("customer_email")


class BaseWebhookHandler:
    """Base class for webhook event handlers"""

    def __init__(self, db: Session, fulfillment: Optional[FulfillmentService] = None):
        self.db = db
        self.fulfillment = fulfillment

    def _find_purchase(
        self,
        session_id: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Purchase]:
        """Look a purchase up by Stripe id first, then by our own id in metadata"""
        query = self.db.query(Purchase)
        if session_id:
            purchase = query.filter(Purchase.stripe_checkout_session_id == session_id).first()
            if purchase:
                return purchase
        if payment_intent_id:
            purchase = query.filter(Purchase.stripe_payment_intent_id == payment_intent_id).first()
            if purchase:
                return purchase
        purchase_id = (metadata or {}).get("purchase_id")
        if purchase_id:
            return self.db.get(Purchase, purchase_id)
        return None

    def _complete(
        self,
        purchase: Purchase,
        payment_intent_id: Optional[str],
        amount_minor: Optional[int],
        currency: Optional[str],
        session_id: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        pending -> completed, then fulfillment

        The status is written with a conditional UPDATE so only one delivery
        can win the transition; the loser sees zero rows and does nothing.
        """
        if purchase.status == PurchaseStatus.COMPLETED:
            logger.info(f"Purchase {purchase.id} already completed, skipping fulfillment")
            return _ignored("Purchase already completed", purchase_id=purchase.id)
        if purchase.status != PurchaseStatus.PENDING:
            logger.warning(f"Ignoring completion for purchase {purchase.id} in status {purchase.status.value}")
            return _ignored(f"Purchase is {purchase.status.value}", purchase_id=purchase.id)

        now = utcnow()
        values: Dict[str, Any] = {"status": PurchaseStatus.COMPLETED, "purchased_at": now, "updated_at": now}
        if payment_intent_id:
            values["stripe_payment_intent_id"] = payment_intent_id
        if session_id and not purchase.stripe_checkout_session_id:
            values["stripe_checkout_session_id"] = session_id
        if customer_email and not purchase.customer_email:
            values["customer_email"] = customer_email
        if currency:
            values["currency"] = currency.upper()
        if amount_minor is not None:
            values["amount_paid"] = from_minor_units(amount_minor, currency or purchase.currency)

        stmt = (
            update(Purchase)
            .where(Purchase.id == purchase.id, Purchase.status == PurchaseStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except IntegrityError as e:
            # Another purchase of the same PDF by the same user completed first
            self.db.rollback()
            logger.error(
                f"Purchase {purchase.id} paid but user {purchase.user_id} already owns PDF {purchase.pdf_id}; "
                f"needs manual refund: {e}"
            )
            return _ignored("Duplicate completed purchase", purchase_id=purchase.id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to complete purchase {purchase.id}: {e}")
            raise PersistenceError(f"Failed to complete purchase: {e}", operation="complete_purchase")

        self.db.refresh(purchase)
        if result.rowcount != 1:
            logger.info(f"Purchase {purchase.id} was completed by a concurrent delivery")
            return _ignored("Purchase already completed", purchase_id=purchase.id)

        logger.info(f"Purchase {purchase.id} completed ({purchase.amount_paid} {purchase.currency})")

        fulfillment_result = None
        if self.fulfillment is not None:
            fulfillment_result = self.fulfillment.fulfill(purchase)

        return _handled(purchase_id=purchase.id, fulfillment=fulfillment_result)

    def _fail(self, purchase: Purchase, reason: str) -> Dict[str, Any]:
        """pending -> failed"""
        if purchase.status != PurchaseStatus.PENDING:
            logger.info(f"Not failing purchase {purchase.id} in status {purchase.status.value}")
            return _ignored(f"Purchase is {purchase.status.value}", purchase_id=purchase.id)

        stmt = (
            update(Purchase)
            .where(Purchase.id == purchase.id, Purchase.status == PurchaseStatus.PENDING)
            .values(status=PurchaseStatus.FAILED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to mark purchase {purchase.id} failed: {e}")
            raise PersistenceError(f"Failed to update purchase: {e}", operation="fail_purchase")

        self.db.refresh(purchase)
        if result.rowcount != 1:
            return _ignored(f"Purchase is {purchase.status.value}", purchase_id=purchase.id)

        logger.info(f"Purchase {purchase.id} marked failed: {reason}")
        return _handled(purchase_id=purchase.id, reason=reason)


class CheckoutSessionHandler(BaseWebhookHandler):
    """Handler for checkout session events"""

    def handle_session_completed(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        session = event_data.get("object", {})
        session_id = session.get("id")
        metadata = session.get("metadata") or {}

        purchase = self._find_purchase(session_id=session_id, metadata=metadata)
        if purchase is None:
            purchase = self._create_payment_link_purchase(session)
        if purchase is None:
            logger.warning(f"No purchase found for checkout session {session_id} (event {event_id})")
            return _ignored("Purchase not found", session_id=session_id)

        if session.get("payment_status") == "unpaid":
            # Delayed methods (SEPA debit) confirm later via async_payment_succeeded
            self._record_payment_intent(purchase, session.get("payment_intent"), session_id, captured_email(session))
            logger.info(f"Checkout session {session_id} completed, payment still processing")
            return _ignored("Payment not yet confirmed", purchase_id=purchase.id)

        return self._complete(
            purchase,
            payment_intent_id=session.get("payment_intent"),
            amount_minor=session.get("amount_total"),
            currency=session.get("currency"),
            session_id=session_id,
            customer_email=captured_email(session),
        )

    def handle_async_payment_succeeded(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        return self.handle_session_completed(event_data, event_id)

    def handle_async_payment_failed(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        session = event_data.get("object", {})
        purchase = self._find_purchase(session_id=session.get("id"), metadata=session.get("metadata"))
        if purchase is None:
            return _ignored("Purchase not found", session_id=session.get("id"))
        return self._fail(purchase, reason="async payment failed")

    def handle_session_expired(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        session = event_data.get("object", {})
        purchase = self._find_purchase(session_id=session.get("id"), metadata=session.get("metadata"))
        if purchase is None:
            return _ignored("Purchase not found", session_id=session.get("id"))
        return self._fail(purchase, reason="checkout session expired")

    def _record_payment_intent(
        self,
        purchase: Purchase,
        payment_intent_id: Optional[str],
        session_id: str,
        customer_email: Optional[str] = None,
    ) -> None:
        try:
            if payment_intent_id:
                purchase.stripe_payment_intent_id = payment_intent_id
            if not purchase.stripe_checkout_session_id:
                purchase.stripe_checkout_session_id = session_id
            if customer_email and not purchase.customer_email:
                purchase.customer_email = customer_email
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to update purchase: {e}", operation="record_payment_intent")

    def _create_payment_link_purchase(self, session: Dict[str, Any]) -> Optional[Purchase]:
        """Payment link checkouts have no purchase row until Stripe reports back"""
        metadata = session.get("metadata") or {}
        catalog = PdfCatalog(self.db)

        item = catalog.find_by_payment_link(session.get("payment_link"))
        if item is None and metadata.get("pdf_id"):
            item = self.db.get(CatalogItem, metadata["pdf_id"])
        if item is None:
            return None

        currency = (session.get("currency") or item.currency or "EUR").upper()
        amount_total = session.get("amount_total")

        purchase = Purchase(
            customer_email=captured_email(session),
            pdf_id=item.id,
            stripe_checkout_session_id=session.get("id"),
            stripe_customer_id=session.get("customer"),
            amount_paid=from_minor_units(amount_total, currency) if amount_total is not None else Decimal(item.price),
            currency=currency,
            status=PurchaseStatus.PENDING,
        )
        try:
            self.db.add(purchase)
            self.db.commit()
        except IntegrityError:
            # A concurrent delivery inserted it first
            self.db.rollback()
            return self._find_purchase(session_id=session.get("id"))
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to create purchase: {e}", operation="create_link_purchase")

        logger.info(f"Created purchase {purchase.id} for payment link session {session.get('id')}")
        return purchase


class PaymentIntentHandler(BaseWebhookHandler):
    """Handler for payment intent events"""

    def handle_payment_succeeded(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        intent = event_data.get("object", {})
        purchase = self._find_purchase(payment_intent_id=intent.get("id"), metadata=intent.get("metadata"))
        if purchase is None:
            logger.info(f"No purchase for payment intent {intent.get('id')} (event {event_id})")
            return _ignored("Purchase not found", payment_intent_id=intent.get("id"))

        return self._complete(
            purchase,
            payment_intent_id=intent.get("id"),
            amount_minor=intent.get("amount_received", intent.get("amount")),
            currency=intent.get("currency"),
            customer_email=intent.get("receipt_email"),
        )

    def handle_payment_failed(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        intent = event_data.get("object", {})
        purchase = self._find_purchase(payment_intent_id=intent.get("id"), metadata=intent.get("metadata"))
        if purchase is None:
            return _ignored("Purchase not found", payment_intent_id=intent.get("id"))

        error = intent.get("last_payment_error") or {}
        return self._fail(purchase, reason=error.get("message") or "payment failed")


class DisputeHandler(BaseWebhookHandler):
    """Disputes are flagged for manual review only"""

    def handle_dispute_created(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        dispute = event_data.get("object", {})
        purchase = self._find_purchase(payment_intent_id=dispute.get("payment_intent"))
        logger.warning(
            f"Dispute {dispute.get('id')} created for charge {dispute.get('charge')} "
            f"(purchase {purchase.id if purchase else 'unknown'}, amount {dispute.get('amount')}, "
            f"reason {dispute.get('reason')}); manual review required"
        )
        return _handled(dispute_id=dispute.get("id"), purchase_id=purchase.id if purchase else None)
