"""
D2 Checkout

Hosted checkout sessions and cached payment links for catalog PDFs.
"""

from .checkout import CheckoutConfig, CheckoutSessionCreator
from .models import Purchase, PurchaseStatus, StripeCustomer
from .payment_links import PaymentLinkCreator
from .rate_limiter import PaymentLinkRateLimiter
from .stripe_client import StripeClient, StripeConfig, StripeError

__all__ = [
    "CheckoutConfig",
    "CheckoutSessionCreator",
    "PaymentLinkCreator",
    "PaymentLinkRateLimiter",
    "Purchase",
    "PurchaseStatus",
    "StripeClient",
    "StripeConfig",
    "StripeCustomer",
    "StripeError",
]
