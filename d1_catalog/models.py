"""
D1 Catalog Models

Purchasable PDF documents. Rows are maintained by CMS operators; this
service only reads them and lazily fills the cached payment-link columns.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Column, Numeric, String, Text

from database.base import Base, TimestampMixin, generate_uuid


class CatalogItem(Base, TimestampMixin):
    """A downloadable premium PDF"""

    __tablename__ = "downloadable_pdfs"

    id = Column(String(64), primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="EUR")
    is_premium = Column(Boolean, nullable=False, default=False)
    file_url = Column(Text, nullable=False)
    image_url = Column(Text)

    # Cached payment link, written once by the payment link creator
    stripe_price_id = Column(String(255))
    stripe_payment_link_id = Column(String(255), index=True)
    stripe_payment_link_url = Column(Text)

    @property
    def has_payment_link(self) -> bool:
        return bool(self.stripe_payment_link_url)

    def __repr__(self):
        return f"<CatalogItem(id={self.id}, title={self.title!r}, price={self.price} {self.currency})>"
