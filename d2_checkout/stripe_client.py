"""
D2 Checkout Stripe Client

Thin wrapper over the Stripe SDK for customers, checkout sessions, prices,
payment links and webhook verification. Every call passes the API key
explicitly so no global SDK state is mutated.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import stripe

from core.config import Settings
from core.exceptions import ProviderError, SignatureError

logger = logging.getLogger(__name__)

HOSTED_CHECKOUT_DOMAIN = "checkout.stripe.com"


class StripeConfig:
    """Configuration for Stripe integration"""

    def __init__(
        self,
        api_key: Optional[str],
        webhook_secret: Optional[str] = None,
        api_version: Optional[str] = None,
        session_expires_after_minutes: int = 30,
        payment_method_types: Optional[List[str]] = None,
        statement_descriptor: str = "FINANCE*REPORT",
        webhook_tolerance_seconds: int = 300,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.api_version = api_version
        self.session_expires_after_minutes = session_expires_after_minutes
        self.payment_method_types = payment_method_types or ["card"]
        self.statement_descriptor = statement_descriptor
        self.webhook_tolerance_seconds = webhook_tolerance_seconds

        # Default configuration
        self.billing_address_collection = "auto"
        self.allow_promotion_codes = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeConfig":
        return cls(
            api_key=settings.stripe_secret_key.get_secret_value() if settings.stripe_secret_key else None,
            webhook_secret=settings.stripe_webhook_secret.get_secret_value() if settings.stripe_webhook_secret else None,
            api_version=settings.stripe_api_version,
            session_expires_after_minutes=settings.checkout_expires_after_minutes,
            payment_method_types=list(settings.checkout_payment_method_types),
            statement_descriptor=settings.statement_descriptor,
        )

    @property
    def test_mode(self) -> bool:
        return not self.api_key or self.api_key.startswith("sk_test_")


class StripeCheckoutSession:
    """Data class for Stripe checkout session configuration"""

    def __init__(
        self,
        line_items: List[Dict[str, Any]],
        success_url: str,
        cancel_url: str,
        customer_id: Optional[str] = None,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        payment_intent_metadata: Optional[Dict[str, str]] = None,
        mode: str = "payment",
    ):
        self.line_items = line_items
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.customer_id = customer_id
        self.customer_email = customer_email
        self.metadata = metadata or {}
        self.payment_intent_metadata = payment_intent_metadata or {}
        self.mode = mode

    def to_stripe_params(self, config: StripeConfig) -> Dict[str, Any]:
        """Convert to Stripe API parameters"""
        params = {
            "line_items": self.line_items,
            "mode": self.mode,
            "payment_method_types": config.payment_method_types,
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
            "expires_at": int(
                (datetime.now(timezone.utc) + timedelta(minutes=config.session_expires_after_minutes)).timestamp()
            ),
            "billing_address_collection": config.billing_address_collection,
            "allow_promotion_codes": config.allow_promotion_codes,
            "metadata": self.metadata,
            "payment_intent_data": {
                "metadata": self.payment_intent_metadata,
                "statement_descriptor": config.statement_descriptor,
            },
        }

        # A customer object takes precedence over a bare email
        if self.customer_id:
            params["customer"] = self.customer_id
        elif self.customer_email:
            params["customer_email"] = self.customer_email

        return params


class StripeError(ProviderError):
    """Stripe API call failed or returned an unexpected shape"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        error_type: Optional[str] = None,
    ):
        super().__init__("Stripe", message, details=error_code)
        self.stripe_error_code = error_code
        self.error_type = error_type


class StripeClient:
    """Stripe client for checkout sessions, payment links and webhooks"""

    def __init__(self, config: StripeConfig):
        self.config = config
        logger.info(f"Initialized Stripe client in {'test' if self.config.test_mode else 'live'} mode")

    def _request_options(self) -> Dict[str, Any]:
        if not self.config.api_key:
            raise StripeError("Stripe secret key is not configured", error_code="missing_api_key")
        options = {"api_key": self.config.api_key}
        if self.config.api_version:
            options["stripe_version"] = self.config.api_version
        return options

    @staticmethod
    def _wrap(operation: str, e: Exception) -> StripeError:
        if isinstance(e, stripe.StripeError):
            logger.error(f"Stripe error during {operation}: {e.user_message or e}")
            return StripeError(
                f"Failed to {operation}: {e.user_message or str(e)}",
                error_code=getattr(e, "code", None),
                error_type=type(e).__name__,
            )
        logger.error(f"Unexpected error during {operation}: {e}")
        return StripeError(f"Failed to {operation}: {e}")

    def create_customer(
        self,
        email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a Stripe customer"""
        try:
            params: Dict[str, Any] = {"metadata": metadata or {}}
            if email:
                params["email"] = email
            customer = stripe.Customer.create(**params, **self._request_options())
        except StripeError:
            raise
        except Exception as e:
            raise self._wrap("create customer", e)

        logger.info(f"Created Stripe customer {customer.id}")
        return {"success": True, "customer_id": customer.id, "email": getattr(customer, "email", email)}

    def create_checkout_session(self, session_config: StripeCheckoutSession) -> Dict[str, Any]:
        """Create a hosted checkout session"""
        params = session_config.to_stripe_params(self.config)
        try:
            session = stripe.checkout.Session.create(**params, **self._request_options())
        except StripeError:
            raise
        except Exception as e:
            raise self._wrap("create checkout session", e)

        if not getattr(session, "id", None) or not getattr(session, "url", None):
            raise StripeError("Checkout session response is missing id or url", error_code="unexpected_response")

        logger.info(f"Created checkout session: {session.id}")
        return {
            "success": True,
            "session_id": session.id,
            "session_url": session.url,
            "expires_at": params["expires_at"],
        }

    def create_price(
        self,
        amount_cents: int,
        currency: str,
        product_name: str,
        product_metadata: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a one-off price with an inline product"""
        try:
            price = stripe.Price.create(
                currency=currency.lower(),
                unit_amount=amount_cents,
                product_data={"name": product_name, "metadata": product_metadata or {}},
                metadata=metadata or {},
                **self._request_options(),
            )
        except StripeError:
            raise
        except Exception as e:
            raise self._wrap("create price", e)

        logger.info(f"Created price {price.id} ({amount_cents} {currency.lower()})")
        return {"success": True, "price_id": price.id, "unit_amount": amount_cents, "currency": currency.lower()}

    def create_payment_link(
        self,
        price_id: str,
        redirect_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a reusable payment link for a single price"""
        try:
            link = stripe.PaymentLink.create(
                line_items=[{"price": price_id, "quantity": 1}],
                metadata=metadata or {},
                allow_promotion_codes=self.config.allow_promotion_codes,
                after_completion={"type": "redirect", "redirect": {"url": redirect_url}},
                **self._request_options(),
            )
        except StripeError:
            raise
        except Exception as e:
            raise self._wrap("create payment link", e)

        if not getattr(link, "id", None) or not getattr(link, "url", None):
            raise StripeError("Payment link response is missing id or url", error_code="unexpected_response")

        logger.info(f"Created payment link {link.id} for price {price_id}")
        return {"success": True, "payment_link_id": link.id, "payment_link_url": link.url}

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the signature and return the event as a plain dict

        Raises:
            SignatureError: missing header, bad signature or unparsable payload
        """
        if not signature:
            raise SignatureError("Missing stripe-signature header")
        if not self.config.webhook_secret:
            raise SignatureError("Webhook secret is not configured")

        try:
            stripe.Webhook.construct_event(
                payload, signature, self.config.webhook_secret, tolerance=self.config.webhook_tolerance_seconds
            )
            event = json.loads(payload)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Invalid webhook signature: {e}")
            raise SignatureError(details=str(e))

        return {
            "success": True,
            "event_id": event.get("id"),
            "event_type": event.get("type"),
            "data": event.get("data", {}),
            "created": event.get("created"),
            "livemode": event.get("livemode"),
        }

    def is_test_mode(self) -> bool:
        return self.config.test_mode


# Utility functions for common operations
def create_one_time_line_item(
    product_name: str,
    amount_cents: int,
    currency: str,
    description: Optional[str] = None,
    product_metadata: Optional[Dict[str, str]] = None,
    quantity: int = 1,
) -> Dict[str, Any]:
    """Create a one-time payment line item"""
    product_data: Dict[str, Any] = {"name": product_name, "metadata": product_metadata or {}}
    if description:
        product_data["description"] = description
    return {
        "price_data": {
            "currency": currency.lower(),
            "product_data": product_data,
            "unit_amount": amount_cents,
        },
        "quantity": quantity,
    }
