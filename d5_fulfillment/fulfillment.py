"""
Purchase fulfillment

Runs after a purchase reaches completed: mint a download token, email the
link. Failures are logged and written to the purchase row; they never
change the purchase status.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import InvalidStateError, NotFoundError, StoreError, ValidationError
from core.utils import utcnow
from d2_checkout.models import Purchase, PurchaseStatus, StripeCustomer
from d4_downloads.tokens import DownloadTokenIssuer

from .email_builder import ConfirmationEmailData
from .emailer import FulfillmentEmailer

logger = logging.getLogger(__name__)


class FulfillmentService:
    """Token issuance plus confirmation email for one purchase"""

    def __init__(
        self,
        db: Session,
        emailer: FulfillmentEmailer,
        token_issuer: DownloadTokenIssuer,
        base_url: str,
    ):
        self.db = db
        self.emailer = emailer
        self.token_issuer = token_issuer
        self.base_url = base_url.rstrip("/")

    def download_url(self, token: str) -> str:
        return f"{self.base_url}/api/v1/download/{token}"

    def recipient_for(self, purchase: Purchase) -> Optional[str]:
        if purchase.customer_email:
            return purchase.customer_email
        if purchase.user_id:
            mapping = self.db.query(StripeCustomer).filter(StripeCustomer.user_id == purchase.user_id).first()
            if mapping and mapping.email:
                return mapping.email
        return None

    def fulfill(self, purchase: Purchase) -> Dict[str, Any]:
        """
        Issue a token and send the confirmation email

        Never raises; the outcome is returned and stored on the purchase.
        """
        result: Dict[str, Any] = {"purchase_id": purchase.id, "token_issued": False, "email_sent": False}

        try:
            token = self.token_issuer.issue(purchase)
            result["token_issued"] = True
        except StoreError as e:
            logger.error(f"Fulfillment of purchase {purchase.id} failed at token issuance: {e}")
            self._record_outcome(purchase, error=f"token: {e.message}")
            result["error"] = e.message
            return result

        try:
            self._send(purchase, self.download_url(token.token))
        except StoreError as e:
            logger.error(f"Fulfillment of purchase {purchase.id} failed at email delivery: {e}")
            self._record_outcome(purchase, error=f"email: {e.message}")
            result["error"] = e.message
            return result

        self._record_outcome(purchase, sent=True)
        result["email_sent"] = True
        return result

    def resend(self, session_id: str) -> Dict[str, Any]:
        """
        Re-send the confirmation with a fresh download link

        Raises:
            ValidationError: no session id
            NotFoundError: unknown session
            InvalidStateError: purchase not completed
            EmailDeliveryError: send failed
        """
        if not session_id:
            raise ValidationError("Missing sessionId", field="sessionId")

        purchase = self.db.query(Purchase).filter(Purchase.stripe_checkout_session_id == session_id).first()
        if purchase is None:
            raise NotFoundError("Purchase record", session_id)
        if purchase.status != PurchaseStatus.COMPLETED:
            raise InvalidStateError("Purchase is not completed", details=f"status={purchase.status.value}")

        token = self.token_issuer.issue(purchase)
        self._send(purchase, self.download_url(token.token))

        try:
            now = utcnow()
            purchase.email_resend_count = (purchase.email_resend_count or 0) + 1
            purchase.last_email_resent_at = now
            purchase.email_sent_at = purchase.email_sent_at or now
            purchase.fulfillment_error = None
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to record resend for purchase {purchase.id}: {e}")

        logger.info(f"Resent confirmation for purchase {purchase.id}")
        return {"success": True, "purchase_id": purchase.id, "resend_count": purchase.email_resend_count}

    def _send(self, purchase: Purchase, download_url: str) -> None:
        recipient = self.recipient_for(purchase)
        if not recipient:
            raise ValidationError("No email address for purchase", details=f"purchase={purchase.id}")

        self.emailer.send_confirmation(
            ConfirmationEmailData(
                customer_email=recipient,
                pdf_title=purchase.pdf.title,
                order_id=purchase.stripe_checkout_session_id or purchase.id,
                amount=purchase.amount_paid,
                currency=purchase.currency,
                download_url=download_url,
            ),
            purchase_id=purchase.id,
        )

    def _record_outcome(self, purchase: Purchase, sent: bool = False, error: Optional[str] = None) -> None:
        try:
            if sent:
                purchase.email_sent_at = utcnow()
                purchase.fulfillment_error = None
            else:
                purchase.fulfillment_error = error
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to record fulfillment outcome for purchase {purchase.id}: {e}")
