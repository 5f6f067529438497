"""
D2 Checkout API

Checkout session and payment link endpoints. Store errors propagate to the
application exception handler, which renders {error, details}.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.services import Services, get_db, get_services

from .checkout import CheckoutSessionCreator
from .payment_links import PaymentLinkCreator
from .rate_limiter import get_client_key
from .schemas import CheckoutSessionRequest, CheckoutSessionResponse, PaymentLinkRequest, PaymentLinkResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["checkout"])


# Dependency injection helpers
def get_checkout_creator(
    services: Services = Depends(get_services), db: Session = Depends(get_db)
) -> CheckoutSessionCreator:
    return services.checkout_creator(db)


def get_payment_link_creator(
    services: Services = Depends(get_services), db: Session = Depends(get_db)
) -> PaymentLinkCreator:
    return services.payment_link_creator(db)


@router.post(
    "/create-checkout-session",
    response_model=CheckoutSessionResponse,
    response_model_by_alias=True,
    summary="Create a hosted checkout session",
)
def create_checkout_session(
    request: CheckoutSessionRequest,
    creator: CheckoutSessionCreator = Depends(get_checkout_creator),
) -> CheckoutSessionResponse:
    """
    Create a pending purchase and a Stripe checkout session for it.

    The buyer is redirected to the returned URL; the purchase only completes
    once Stripe confirms the payment through the webhook.
    """
    logger.info(f"Checkout requested for PDF {request.pdf_id} by user {request.user_id}")

    result = creator.create_session(
        pdf_id=request.pdf_id,
        user_id=request.user_id,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
        customer_email=request.customer_email,
    )
    return CheckoutSessionResponse(session_id=result["session_id"], url=result["url"])


@router.post(
    "/create-payment-link",
    response_model=PaymentLinkResponse,
    response_model_by_alias=True,
    summary="Get or create the payment link for a PDF",
)
def create_payment_link(
    request: PaymentLinkRequest,
    client_key: str = Depends(get_client_key),
    creator: PaymentLinkCreator = Depends(get_payment_link_creator),
) -> PaymentLinkResponse:
    """Rate limited per caller; a cached link is returned without calling Stripe"""
    result = creator.create_link(request.pdf_id, client_key)

    return PaymentLinkResponse(
        payment_link_url=result["payment_link_url"],
        payment_link_id=result["payment_link_id"],
        price_id=result["price_id"],
        amount=result["amount"],
        currency=result["currency"],
        pdf_title=result["pdf_title"],
        cached=result["cached"],
    )
