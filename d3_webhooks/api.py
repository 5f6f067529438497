"""
D3 Webhooks API

Stripe webhook receiver. The raw body is passed through untouched because
the signature covers the exact bytes Stripe sent.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from core.services import Services, get_db, get_services

from .webhooks import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["webhooks"])


def get_webhook_processor(
    services: Services = Depends(get_services), db: Session = Depends(get_db)
) -> WebhookProcessor:
    return services.webhook_processor(db)


@router.post("/webhook-receiver", summary="Stripe webhook endpoint")
async def webhook_receiver(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Verify and apply one Stripe event.

    Signature failures return 400 and persistence failures 500 so Stripe
    redelivers; everything else, including duplicates, is acknowledged.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    # Verification and the database work are blocking
    result = await run_in_threadpool(processor.process_webhook, payload, signature)
    logger.info(f"Webhook {result.get('event_id')} acknowledged with status {result.get('status')}")

    return {"received": True}
