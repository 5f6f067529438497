"""
D3 Webhook Models

Record of every Stripe event delivered to us, used to drop replays.
"""

import enum

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from core.utils import utcnow
from database.base import Base, StringEnum, generate_uuid


class WebhookStatus(str, enum.Enum):
    """Webhook processing status"""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    IGNORED = "ignored"


class WebhookEvent(Base):
    """
    One row per Stripe event id.

    completed and ignored rows block reprocessing; failed rows and stale
    processing rows let Stripe's redelivery through.
    """

    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    stripe_event_id = Column(String(255), unique=True, nullable=False)
    event_type = Column(String(100), nullable=False)
    status = Column(StringEnum(WebhookStatus), nullable=False, default=WebhookStatus.PROCESSING)
    retry_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    processed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (Index("ix_webhook_events_status_created", "status", "created_at"),)

    def __repr__(self):
        return f"<WebhookEvent(stripe_event_id={self.stripe_event_id}, status={self.status})>"
