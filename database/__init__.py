"""Database package for the PDF store"""

from database.base import Base, generate_uuid
from database.session import create_db_engine, create_session_factory, session_scope

__all__ = ["Base", "generate_uuid", "create_db_engine", "create_session_factory", "session_scope"]
