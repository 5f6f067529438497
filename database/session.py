"""Database engine and session factory construction"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def create_db_engine(database_url: str, echo: bool = False, pool_size: int = 10) -> Engine:
    """Create engine with appropriate settings for the backend"""
    if database_url.startswith("sqlite"):
        # SQLite specific settings for testing and local development
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo,
        )

    # PostgreSQL settings for production
    return create_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=20,
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create session factory bound to the engine"""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Session context manager for code outside a request (CLI, jobs)"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
