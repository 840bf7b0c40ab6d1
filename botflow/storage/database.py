"""Database connection and session management."""

import os
from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all database models
Base = declarative_base()

engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine with settings suitable for the database type."""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            # One shared connection, otherwise every session sees an empty database.
            return create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=echo
            )
        return create_engine(database_url, connect_args=connect_args, echo=echo)

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def configure_database(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """(Re)bind the module-level engine and session factory."""
    global engine, SessionLocal

    if database_url is None:
        database_url = os.getenv("BOTFLOW_DATABASE_URL", "sqlite:///./botflow.db")

    if engine is not None:
        engine.dispose()

    engine = build_engine(database_url, echo=echo)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return engine


def get_database_engine() -> Engine:
    """Get the configured engine, configuring it from the environment if needed."""
    if engine is None:
        configure_database()
    return engine


def get_session():
    """Open a new session bound to the configured engine."""
    get_database_engine()
    return SessionLocal()


def create_tables():
    """Create all database tables."""
    from . import models  # noqa: F401  registers the tables on Base.metadata
    Base.metadata.create_all(bind=get_database_engine())


def drop_tables():
    """Drop all database tables."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=get_database_engine())
