"""Core utilities and configuration for the PDF store"""
from core.config import Settings, get_settings
from core.exceptions import NotFoundError, StoreError, ValidationError
from core.logging import get_logger

__all__ = [
    "Settings",
    "get_settings",
    "get_logger",
    "StoreError",
    "ValidationError",
    "NotFoundError",
]
