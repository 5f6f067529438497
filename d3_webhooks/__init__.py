"""
D3 Webhooks

Stripe event intake driving the purchase status state machine.
"""

from .models import WebhookEvent, WebhookStatus
from .webhooks import WebhookEventType, WebhookProcessor

__all__ = ["WebhookEvent", "WebhookEventType", "WebhookProcessor", "WebhookStatus"]
