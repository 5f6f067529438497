"""
D2 Checkout Sessions

Creates a Stripe-hosted checkout session for one premium PDF together with the
local pending purchase it correlates to.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import Settings
from core.exceptions import AlreadyPurchasedError, InvalidStateError, PersistenceError, ValidationError
from core.utils import to_minor_units
from d1_catalog.catalog import PdfCatalog
from d1_catalog.models import CatalogItem

from .models import Purchase, PurchaseStatus, StripeCustomer, quantize_amount
from .stripe_client import StripeCheckoutSession, StripeClient, create_one_time_line_item

logger = logging.getLogger(__name__)

PRODUCT_TYPE = "premium_pdf"
DEFAULT_PRODUCT_DESCRIPTION = "Premium PDF Report"


class CheckoutConfig:
    """Configuration for checkout flow"""

    def __init__(
        self,
        min_price: Decimal = Decimal("0.50"),
        max_price: Decimal = Decimal("999999.99"),
        default_currency: str = "EUR",
    ):
        self.min_price = min_price
        self.max_price = max_price
        self.default_currency = default_currency

    @classmethod
    def from_settings(cls, settings: Settings) -> "CheckoutConfig":
        return cls(
            min_price=settings.min_price,
            max_price=settings.max_price,
            default_currency=settings.default_currency,
        )


def validate_purchasable(item: CatalogItem, config: CheckoutConfig) -> Decimal:
    """
    Check an item can be sold and return its price

    Raises:
        InvalidStateError: not premium or not priced
        ValidationError: price outside what Stripe accepts
    """
    if not PdfCatalog.is_purchasable(item):
        raise InvalidStateError("PDF is not available for purchase", details=f"pdf={item.id}")

    price = quantize_amount(item.price)
    if price < config.min_price or price > config.max_price:
        raise ValidationError(
            "Invalid PDF price",
            field="price",
            details=f"Price must be between {config.min_price} and {config.max_price}",
        )
    return price


class CheckoutSessionCreator:
    """
    Checkout session creation for signed-in buyers

    The duplicate purchase check is advisory: two concurrent attempts can both
    pass it. The partial unique index on completed purchases catches the
    second completion.
    """

    def __init__(self, db: Session, stripe_client: StripeClient, config: Optional[CheckoutConfig] = None):
        self.db = db
        self.stripe_client = stripe_client
        self.config = config or CheckoutConfig()
        self.catalog = PdfCatalog(db)

    def create_session(
        self,
        pdf_id: Optional[str],
        user_id: Optional[str],
        success_url: Optional[str],
        cancel_url: Optional[str],
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a pending purchase and the matching hosted checkout session

        Returns:
            dict with session_id, url and purchase_id
        """
        if not pdf_id or not user_id or not success_url or not cancel_url:
            raise ValidationError("Missing required fields", details="pdfId, userId, successUrl and cancelUrl are required")

        item = self.catalog.get_item(pdf_id)
        price = validate_purchasable(item, self.config)
        currency = (item.currency or self.config.default_currency).upper()

        if self.has_completed_purchase(user_id, pdf_id):
            logger.info(f"User {user_id} already purchased PDF {pdf_id}")
            raise AlreadyPurchasedError(user_id, pdf_id)

        customer_id = self.resolve_customer(user_id, customer_email)
        purchase = self._create_pending_purchase(item, user_id, customer_id, price, currency, customer_email)

        metadata = {
            "pdf_id": item.id,
            "user_id": user_id,
            "pdf_title": item.title,
            "purchase_id": purchase.id,
            "product_type": PRODUCT_TYPE,
        }
        line_item = create_one_time_line_item(
            product_name=item.title,
            amount_cents=to_minor_units(price, currency),
            currency=currency,
            description=item.description or DEFAULT_PRODUCT_DESCRIPTION,
            product_metadata={"pdf_id": item.id, "content_type": PRODUCT_TYPE},
        )
        session_config = StripeCheckoutSession(
            line_items=[line_item],
            success_url=success_url,
            cancel_url=cancel_url,
            customer_id=customer_id,
            metadata=metadata,
            payment_intent_metadata={"pdf_id": item.id, "user_id": user_id, "purchase_id": purchase.id},
        )

        # On provider failure the pending purchase stays behind for the stale sweep
        session = self.stripe_client.create_checkout_session(session_config)

        self._attach_session(purchase, session["session_id"])

        logger.info(f"Created checkout session {session['session_id']} for purchase {purchase.id}")
        return {
            "success": True,
            "session_id": session["session_id"],
            "url": session["session_url"],
            "purchase_id": purchase.id,
        }

    def has_completed_purchase(self, user_id: str, pdf_id: str) -> bool:
        return (
            self.db.query(Purchase.id)
            .filter(
                Purchase.user_id == user_id,
                Purchase.pdf_id == pdf_id,
                Purchase.status == PurchaseStatus.COMPLETED,
            )
            .first()
            is not None
        )

    def resolve_customer(self, user_id: str, email: Optional[str] = None) -> str:
        """Return the buyer's Stripe customer, creating and caching one on first use"""
        mapping = self.db.query(StripeCustomer).filter(StripeCustomer.user_id == user_id).first()
        if mapping:
            return mapping.stripe_customer_id

        customer = self.stripe_client.create_customer(email=email, metadata={"user_id": user_id})
        try:
            self.db.add(
                StripeCustomer(user_id=user_id, stripe_customer_id=customer["customer_id"], email=customer.get("email"))
            )
            self.db.commit()
        except IntegrityError:
            # A concurrent checkout stored a mapping first; use that one
            self.db.rollback()
            mapping = self.db.query(StripeCustomer).filter(StripeCustomer.user_id == user_id).first()
            if mapping:
                logger.warning(f"Discarding duplicate Stripe customer {customer['customer_id']} for user {user_id}")
                return mapping.stripe_customer_id
            raise PersistenceError("Failed to store Stripe customer", operation="resolve_customer")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store Stripe customer for user {user_id}: {e}")
            raise PersistenceError(f"Failed to store Stripe customer: {e}", operation="resolve_customer")

        return customer["customer_id"]

    def _create_pending_purchase(
        self,
        item: CatalogItem,
        user_id: str,
        customer_id: str,
        price: Decimal,
        currency: str,
        customer_email: Optional[str],
    ) -> Purchase:
        purchase = Purchase(
            user_id=user_id,
            customer_email=customer_email,
            pdf_id=item.id,
            stripe_customer_id=customer_id,
            amount_paid=price,
            currency=currency,
            status=PurchaseStatus.PENDING,
        )
        try:
            self.db.add(purchase)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create purchase record for PDF {item.id}: {e}")
            raise PersistenceError(f"Failed to create purchase record: {e}", operation="create_purchase")
        return purchase

    def _attach_session(self, purchase: Purchase, session_id: str) -> None:
        try:
            purchase.stripe_checkout_session_id = session_id
            self.db.commit()
        except SQLAlchemyError as e:
            # Webhooks can still find the purchase through session metadata
            self.db.rollback()
            logger.error(f"Failed to record session {session_id} on purchase {purchase.id}: {e}")
