"""
D4 Download Token Issuer

Issues download tokens for completed purchases and redeems them for the
file-serving endpoint.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import and_, delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import (InvalidStateError, NotFoundError, PersistenceError,
                             TokenExhaustedError, TokenExpiredError)
from core.utils import generate_token, utcnow
from d2_checkout.models import Purchase, PurchaseStatus

from .models import DownloadToken

logger = logging.getLogger(__name__)


class DownloadTokenIssuer:
    """Mints and redeems download tokens"""

    def __init__(self, db: Session, ttl_hours: int = 48, max_downloads: int = 5):
        self.db = db
        self.ttl = timedelta(hours=ttl_hours)
        self.max_downloads = max_downloads

    def issue(self, purchase: Purchase, now: Optional[datetime] = None) -> DownloadToken:
        """
        Create a fresh token for a completed purchase

        Raises:
            InvalidStateError: purchase is not completed
            PersistenceError: token could not be stored
        """
        if purchase.status != PurchaseStatus.COMPLETED:
            raise InvalidStateError(
                "Download tokens are only issued for completed purchases",
                details=f"purchase={purchase.id} status={purchase.status.value}",
            )

        now = now or utcnow()
        token = DownloadToken(
            purchase_id=purchase.id,
            token=generate_token(32),
            expires_at=now + self.ttl,
            max_downloads=self.max_downloads,
            download_count=0,
            created_at=now,
        )
        try:
            self.db.add(token)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to issue download token for purchase {purchase.id}: {e}")
            raise PersistenceError(f"Failed to issue download token: {e}", operation="issue_token")

        logger.info(f"Issued download token for purchase {purchase.id}, expires {token.expires_at.isoformat()}")
        return token

    def redeem(
        self,
        token: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Consume one download.

        The counter is bumped with a single conditional UPDATE so concurrent
        redemptions of one token can never exceed max_downloads.

        Raises:
            NotFoundError: unknown token
            TokenExpiredError: past expiry
            TokenExhaustedError: no downloads left
        """
        now = now or utcnow()
        stmt = (
            update(DownloadToken)
            .where(
                and_(
                    DownloadToken.token == token,
                    DownloadToken.download_count < DownloadToken.max_downloads,
                    DownloadToken.expires_at > now,
                )
            )
            .values(
                download_count=DownloadToken.download_count + 1,
                last_accessed_at=now,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to redeem download token: {e}")
            raise PersistenceError(f"Failed to redeem download token: {e}", operation="redeem_token")

        row = self.db.query(DownloadToken).filter(DownloadToken.token == token).populate_existing().first()

        if result.rowcount != 1:
            if row is None:
                raise NotFoundError("Download token", token[:8] + "...")
            if row.is_expired(now):
                logger.info(f"Expired download token used for purchase {row.purchase_id}")
                raise TokenExpiredError()
            logger.info(f"Exhausted download token used for purchase {row.purchase_id}")
            raise TokenExhaustedError(row.max_downloads)

        purchase = row.purchase
        logger.info(
            f"Download {row.download_count}/{row.max_downloads} for purchase {purchase.id} (PDF {purchase.pdf_id})"
        )
        return {
            "success": True,
            "file_url": purchase.pdf.file_url,
            "pdf_id": purchase.pdf_id,
            "pdf_title": purchase.pdf.title,
            "download_count": row.download_count,
            "remaining_downloads": row.remaining_downloads,
            "expires_at": row.expires_at,
        }

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Delete expired tokens that were never used; returns the number removed"""
        now = now or utcnow()
        stmt = delete(DownloadToken).where(
            and_(DownloadToken.expires_at < now, DownloadToken.download_count == 0)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to clean up download tokens: {e}", operation="cleanup_tokens")

        logger.info(f"Removed {result.rowcount} expired unused download tokens")
        return result.rowcount
