"""
Database configuration and session management.
Uses SQLAlchemy with PostgreSQL for production, SQLite for development and tests.

Engines and session factories are built explicitly (once, at application
startup) and handed to request handlers through FastAPI dependencies.
"""

from typing import Generator
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Base class for all models
Base = declarative_base()

_IN_MEMORY_SQLITE = ("sqlite://", "sqlite:///:memory:")


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine with the pool settings appropriate for the backend."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}  # SQLite specific
        if database_url in _IN_MEMORY_SQLITE:
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    # PostgreSQL
    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,  # Connection pool size
        max_overflow=20,  # Max connections above pool_size
        echo=echo,  # Log SQL queries in debug mode
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine):
    """
    Initialize database - create all tables.
    Should be called on application startup.
    """
    # Register models on Base.metadata before create_all
    from leadlink import db_models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency for getting database sessions.

    Usage in FastAPI:
        @router.get("/leads")
        def list_leads(db: Session = Depends(get_db)):
            return db.query(DBLead).all()
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
