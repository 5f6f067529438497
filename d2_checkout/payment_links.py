"""
D2 Checkout Payment Links

Anonymous purchase flow: one reusable Stripe payment link per PDF, created on
first request and cached on the catalog row afterwards. Buyers are identified
by the email Stripe collects, and the PDF is delivered by email.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from sqlalchemy.orm import Session

from core.exceptions import PersistenceError, RateLimitedError, ValidationError
from core.utils import is_uuid, to_minor_units
from d1_catalog.catalog import PdfCatalog

from .checkout import CheckoutConfig, validate_purchasable
from .rate_limiter import PaymentLinkRateLimiter
from .stripe_client import StripeClient

logger = logging.getLogger(__name__)

DELIVERY_TYPE = "email"


class PaymentLinkCreator:
    """Creates or returns the cached payment link for a catalog item"""

    def __init__(
        self,
        db: Session,
        stripe_client: StripeClient,
        rate_limiter: PaymentLinkRateLimiter,
        site_url: str,
        config: Optional[CheckoutConfig] = None,
    ):
        self.db = db
        self.stripe_client = stripe_client
        self.rate_limiter = rate_limiter
        self.site_url = site_url.rstrip("/")
        self.config = config or CheckoutConfig()
        self.catalog = PdfCatalog(db)

    def create_link(self, pdf_id: Optional[str], client_key: str) -> Dict[str, Any]:
        """
        Return the payment link for a PDF

        Raises:
            RateLimitedError: caller is over quota; nothing else is done
            ValidationError: missing or malformed id
            NotFoundError / InvalidStateError: unknown or unsellable PDF
            StripeError: price or link creation failed
        """
        decision = self.rate_limiter.check(client_key)
        if not decision.allowed:
            raise RateLimitedError(retry_after=decision.retry_after_seconds)

        if not pdf_id:
            raise ValidationError("PDF ID is required", field="pdfId")
        if not is_uuid(pdf_id):
            raise ValidationError("Invalid PDF ID format", field="pdfId")

        item = self.catalog.get_item(pdf_id)
        price = validate_purchasable(item, self.config)
        currency = (item.currency or self.config.default_currency).upper()
        pdf_title = item.title

        if item.has_payment_link:
            logger.info(f"Returning cached payment link for PDF {pdf_id}")
            return {
                "success": True,
                "payment_link_url": item.stripe_payment_link_url,
                "payment_link_id": item.stripe_payment_link_id,
                "price_id": item.stripe_price_id,
                "amount": float(price),
                "currency": currency,
                "pdf_title": pdf_title,
                "cached": True,
            }

        price_result = self.stripe_client.create_price(
            amount_cents=to_minor_units(price, currency),
            currency=currency,
            product_name=pdf_title,
            product_metadata={"pdf_id": pdf_id, "type": "digital_download"},
            metadata={"pdf_id": pdf_id, "pdf_title": pdf_title},
        )
        link_result = self.stripe_client.create_payment_link(
            price_id=price_result["price_id"],
            redirect_url=self.build_redirect_url(pdf_id),
            metadata={
                "pdf_id": pdf_id,
                "pdf_title": pdf_title,
                "delivery_type": DELIVERY_TYPE,
            },
        )

        try:
            self.catalog.cache_payment_link(
                item,
                price_id=price_result["price_id"],
                link_id=link_result["payment_link_id"],
                link_url=link_result["payment_link_url"],
            )
        except PersistenceError as e:
            # The link exists at Stripe and is usable even if we could not cache it
            logger.error(f"Payment link {link_result['payment_link_id']} created but not cached: {e}")

        return {
            "success": True,
            "payment_link_url": link_result["payment_link_url"],
            "payment_link_id": link_result["payment_link_id"],
            "price_id": price_result["price_id"],
            "amount": float(price),
            "currency": currency,
            "pdf_title": pdf_title,
            "cached": False,
        }

    def build_redirect_url(self, pdf_id: str) -> str:
        # Stripe substitutes {CHECKOUT_SESSION_ID} itself, so it must stay unescaped
        return f"{self.site_url}/thank-you?session_id={{CHECKOUT_SESSION_ID}}&pdf_id={quote(pdf_id)}"
