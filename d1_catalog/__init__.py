"""
D1 Catalog

Read-only records of purchasable PDF reports.
"""

from .catalog import PdfCatalog
from .models import CatalogItem

__all__ = ["CatalogItem", "PdfCatalog"]
