"""
D4 Download Models

Time-limited, bounded-use tokens gating access to a purchased PDF.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from core.utils import utcnow
from d2_checkout.models import Purchase
from database.base import Base, generate_uuid


class DownloadToken(Base):
    """One access grant for a completed purchase"""

    __tablename__ = "download_tokens"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    purchase_id = Column(String(36), ForeignKey("purchases.id"), nullable=False, index=True)
    token = Column(String(128), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    max_downloads = Column(Integer, nullable=False, default=5)
    download_count = Column(Integer, nullable=False, default=0)

    # Last access audit
    last_accessed_at = Column(DateTime)
    ip_address = Column(String(45))
    user_agent = Column(Text)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    purchase = relationship(Purchase, lazy="joined")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def is_exhausted(self) -> bool:
        return self.download_count >= self.max_downloads

    def is_redeemable(self, now: Optional[datetime] = None) -> bool:
        return not self.is_expired(now) and not self.is_exhausted()

    @property
    def remaining_downloads(self) -> int:
        return max(self.max_downloads - self.download_count, 0)

    def __repr__(self):
        return f"<DownloadToken(purchase_id={self.purchase_id}, used={self.download_count}/{self.max_downloads})>"
