"""
Database engine and session factory for the credential store.
The engine is built on first use so a missing DATABASE_URL is reported by the startup check, not at import.
"""
import logging
from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from upwork_broker import config
from upwork_broker.models import Base

logger = logging.getLogger(__name__)


@lru_cache()
def get_engine() -> Engine:
    """Create the engine for config.DATABASE_URL."""
    url = config.DATABASE_URL
    # SQLite: in-memory needs StaticPool so all connections share the same DB (for tests)
    # File-based SQLite needs check_same_thread=False for FastAPI's threadpool
    if url.startswith("sqlite:///:memory:") or url == "sqlite://":
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    connect_args = {"sslmode": config.DATABASE_SSLMODE} if config.DATABASE_SSLMODE else {}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


@lru_cache()
def get_session_factory() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=get_engine())


def init_db() -> None:
    """Create the credential table if it does not exist."""
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database initialized")


def dispose_engine() -> None:
    """Close pooled connections (shutdown)."""
    if get_engine.cache_info().currsize:
        get_engine().dispose()
