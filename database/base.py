"""Base class for SQLAlchemy models"""
import uuid

from sqlalchemy import Column, DateTime, String, TypeDecorator
from sqlalchemy.orm import declarative_base

from core.utils import utcnow

Base = declarative_base()


def generate_uuid() -> str:
    """Generate a new UUID"""
    return str(uuid.uuid4())


class StringEnum(TypeDecorator):
    """
    Enum stored as its string value.
    Keeps the column a plain VARCHAR on every backend so partial indexes
    and migrations can compare against literal values.
    """

    impl = String
    cache_ok = True

    def __init__(self, enum_class, *args, **kwargs):
        self.enum_class = enum_class
        max_len = max(len(item.value) for item in enum_class)
        super().__init__(max_len, *args, **kwargs)

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, self.enum_class):
            return value.value
        return self.enum_class(value).value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return self.enum_class(value)


class TimestampMixin:
    """created_at / updated_at columns in naive UTC"""

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
