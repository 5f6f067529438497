"""
D1 Catalog access

Read side of the PDF catalog used by every purchase flow.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import NotFoundError, PersistenceError

from .models import CatalogItem

logger = logging.getLogger(__name__)


class PdfCatalog:
    """Lookup and cached-link bookkeeping for catalog items"""

    def __init__(self, db: Session):
        self.db = db

    def get_item(self, pdf_id: str) -> CatalogItem:
        item = self.db.get(CatalogItem, pdf_id)
        if item is None:
            raise NotFoundError("PDF", pdf_id)
        return item

    def find_by_payment_link(self, payment_link_id: str) -> Optional[CatalogItem]:
        if not payment_link_id:
            return None
        return self.db.query(CatalogItem).filter(CatalogItem.stripe_payment_link_id == payment_link_id).first()

    @staticmethod
    def is_purchasable(item: CatalogItem) -> bool:
        return bool(item.is_premium) and item.price is not None and Decimal(item.price) > 0

    def cache_payment_link(self, item: CatalogItem, price_id: str, link_id: str, link_url: str) -> None:
        """
        Store the provider payment link on the item.

        Raises:
            PersistenceError: if the write fails; the session is rolled back
        """
        # Read before the write; a rollback expires the instance
        item_id = item.id
        try:
            item.stripe_price_id = price_id
            item.stripe_payment_link_id = link_id
            item.stripe_payment_link_url = link_url
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to cache payment link for PDF {item_id}: {e}")
            raise PersistenceError(f"Failed to cache payment link: {e}", operation="cache_payment_link")

        logger.info(f"Cached payment link {link_id} for PDF {item_id}")
