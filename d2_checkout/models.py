"""
D2 Checkout Models

Purchase tracking with Stripe identifiers, the purchase status state machine
and the buyer to Stripe customer mapping.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, text
from sqlalchemy.orm import relationship

from d1_catalog.models import CatalogItem
from core.utils import utcnow
from database.base import Base, StringEnum, TimestampMixin, generate_uuid


class PurchaseStatus(str, enum.Enum):
    """Purchase status for tracking payment lifecycle"""

    PENDING = "pending"  # Checkout started, waiting for Stripe
    COMPLETED = "completed"  # Payment confirmed by webhook
    FAILED = "failed"  # Payment failed or session expired
    DISPUTED = "disputed"  # Chargeback opened after completion


# Allowed status transitions. Nothing leaves failed or disputed.
PURCHASE_TRANSITIONS = {
    PurchaseStatus.PENDING: {PurchaseStatus.COMPLETED, PurchaseStatus.FAILED},
    PurchaseStatus.COMPLETED: {PurchaseStatus.DISPUTED},
    PurchaseStatus.FAILED: set(),
    PurchaseStatus.DISPUTED: set(),
}


def can_transition(current: PurchaseStatus, target: PurchaseStatus) -> bool:
    return target in PURCHASE_TRANSITIONS.get(PurchaseStatus(current), set())


class Purchase(Base, TimestampMixin):
    """
    A single purchase attempt of one PDF

    Rows are never deleted; failed and abandoned attempts stay as audit trail.
    """

    __tablename__ = "purchases"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    # Buyer identity: user id for signed-in checkout, email for payment links
    user_id = Column(String(255), index=True)
    customer_email = Column(String(255), index=True)
    pdf_id = Column(String(64), ForeignKey("downloadable_pdfs.id"), nullable=False, index=True)

    # Stripe ID fields
    stripe_checkout_session_id = Column(String(255), unique=True, index=True)
    stripe_payment_intent_id = Column(String(255), index=True)
    stripe_customer_id = Column(String(255))

    # Payment details
    amount_paid = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")

    # Status management
    status = Column(StringEnum(PurchaseStatus), nullable=False, default=PurchaseStatus.PENDING, index=True)
    purchased_at = Column(DateTime)

    # Fulfillment bookkeeping
    email_sent_at = Column(DateTime)
    email_resend_count = Column(Integer, nullable=False, default=0)
    last_email_resent_at = Column(DateTime)
    fulfillment_error = Column(Text)

    pdf = relationship(CatalogItem, lazy="joined")

    __table_args__ = (
        Index(
            "uq_purchases_completed_user_pdf",
            "user_id",
            "pdf_id",
            unique=True,
            sqlite_where=text("status = 'completed'"),
            postgresql_where=text("status = 'completed'"),
        ),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == PurchaseStatus.COMPLETED

    def transition_to(self, target: PurchaseStatus, at: Optional[datetime] = None) -> None:
        """
        Move to a new status.

        Raises:
            ValueError: if the transition is not allowed
        """
        if not can_transition(self.status, target):
            raise ValueError(f"Purchase {self.id} cannot move from {self.status.value} to {target.value}")
        self.status = target
        if target == PurchaseStatus.COMPLETED:
            self.purchased_at = at or utcnow()

    def __repr__(self):
        return f"<Purchase(id={self.id}, pdf_id={self.pdf_id}, status={self.status})>"


class StripeCustomer(Base, TimestampMixin):
    """Maps a store user to their Stripe customer so one is never created twice"""

    __tablename__ = "stripe_customers"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(255), unique=True, nullable=False)
    stripe_customer_id = Column(String(255), unique=True, nullable=False)
    email = Column(String(255))

    def __repr__(self):
        return f"<StripeCustomer(user_id={self.user_id}, stripe_customer_id={self.stripe_customer_id})>"


def quantize_amount(amount) -> Decimal:
    return Decimal(str(amount)).quantize(Decimal("0.01"))
