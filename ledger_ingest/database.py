"""
Database configuration and session management.
"""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from ledger_ingest.config import load_config

Base = declarative_base()


def create_engine_for_url(database_url: str) -> Engine:
    # Dev fallback when running without Postgres.
    if database_url.startswith("sqlite:"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@lru_cache(maxsize=1)
def default_engine() -> Engine:
    """Engine for the API process, built from DATABASE_URL on first use."""
    return create_engine_for_url(load_config().database_url)


@lru_cache(maxsize=1)
def default_session_factory() -> sessionmaker:
    return make_session_factory(default_engine())


def get_db():
    """Dependency for getting database session."""
    db = default_session_factory()()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine = None) -> None:
    """Initialize database tables."""
    # Import models so SQLAlchemy registers all tables on Base.metadata
    from ledger_ingest import models  # noqa: F401

    Base.metadata.create_all(bind=engine or default_engine())
