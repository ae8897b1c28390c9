"""
Database engine and session factory. One engine per Provider; no module-level connection.
"""
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from oidc_provider.models import Base


def create_db_engine(database_url: str) -> Engine:
    """
    SQLite in-memory needs StaticPool so all connections share the same DB (tests).
    File-based SQLite needs check_same_thread=False for FastAPI's threadpool.
    """
    if database_url.startswith("sqlite:///:memory:") or database_url == "sqlite://":
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Rows are handed back to callers after the session closes, so keep loaded attributes
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables."""
    Base.metadata.create_all(bind=engine)
