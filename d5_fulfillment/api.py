"""
D5 Fulfillment API

Direct confirmation email delivery and re-sending for completed purchases.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.services import Services, get_db, get_services

from .email_builder import ConfirmationEmailData
from .emailer import FulfillmentEmailer
from .fulfillment import FulfillmentService
from .schemas import EmailDeliveryRequest, EmailDeliveryResponse, ResendEmailRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["fulfillment"])


def get_emailer(services: Services = Depends(get_services)) -> FulfillmentEmailer:
    return services.emailer()


def get_fulfillment_service(
    services: Services = Depends(get_services), db: Session = Depends(get_db)
) -> FulfillmentService:
    return services.fulfillment(db)


@router.post("/email-delivery", response_model=EmailDeliveryResponse, summary="Send a purchase confirmation email")
def email_delivery(
    request: EmailDeliveryRequest,
    emailer: FulfillmentEmailer = Depends(get_emailer),
) -> EmailDeliveryResponse:
    emailer.send_confirmation(
        ConfirmationEmailData(
            customer_email=request.customer_email,
            pdf_title=request.pdf_title,
            order_id=request.order_id,
            amount=request.amount or 0,
            currency=request.currency or "EUR",
            download_url=request.download_url,
            pdf_content=request.pdf_content,
        )
    )
    return EmailDeliveryResponse(success=True, message="Email sent successfully")


@router.post("/resend-email", response_model=EmailDeliveryResponse, summary="Re-send a purchase confirmation")
def resend_email(
    request: ResendEmailRequest,
    fulfillment: FulfillmentService = Depends(get_fulfillment_service),
) -> EmailDeliveryResponse:
    """Issues a fresh download link; the purchase must be completed"""
    result = fulfillment.resend(request.session_id)
    logger.info(f"Confirmation re-sent for purchase {result['purchase_id']} ({result['resend_count']} resends)")
    return EmailDeliveryResponse(success=True, message="Email resent successfully")
