"""
Operator-side purchase maintenance

Abandoned checkouts are swept to failed; disputes are applied by hand after
review of the charge.dispute.created log line.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import InvalidStateError, NotFoundError, PersistenceError
from core.utils import utcnow

from .models import Purchase, PurchaseStatus

logger = logging.getLogger(__name__)


def fail_stale_purchases(db: Session, older_than_minutes: int, now: Optional[datetime] = None) -> int:
    """Move pending purchases created before the cutoff to failed; returns the count"""
    now = now or utcnow()
    cutoff = now - timedelta(minutes=older_than_minutes)
    stmt = (
        update(Purchase)
        .where(Purchase.status == PurchaseStatus.PENDING, Purchase.created_at < cutoff)
        .values(status=PurchaseStatus.FAILED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to sweep pending purchases: {e}", operation="sweep_pending")

    logger.info(f"Marked {result.rowcount} pending purchases older than {older_than_minutes} minutes as failed")
    return result.rowcount


def mark_purchase_disputed(db: Session, purchase_id: str) -> Purchase:
    """
    completed -> disputed

    Raises:
        NotFoundError: unknown purchase
        InvalidStateError: purchase is not completed
    """
    purchase = db.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFoundError("Purchase", purchase_id)

    try:
        purchase.transition_to(PurchaseStatus.DISPUTED)
    except ValueError as e:
        raise InvalidStateError("Only completed purchases can be disputed", details=str(e))

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to mark purchase disputed: {e}", operation="mark_disputed")

    logger.warning(f"Purchase {purchase_id} marked disputed")
    return purchase
