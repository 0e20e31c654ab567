"""
Database connection and session management.
Uses SQLAlchemy for Postgres (production) and SQLite (development, tests).
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from sleepfeed.config import get_settings
from sleepfeed.logger import get_logger

logger = get_logger("database")

# Base class for all our database models (must be defined before engine)
Base = declarative_base()


def make_engine(url: str, **kwargs) -> Engine:
    """Create an engine; SQLite connections are shared across the worker threadpool."""
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        return create_engine(url, connect_args=connect_args, **kwargs)
    return create_engine(url, pool_pre_ping=True, connect_args={"connect_timeout": 5}, **kwargs)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = make_engine(get_settings().database_url)
SessionLocal = make_session_factory(engine)


def init_db(bind: Engine = None) -> None:
    """Create tables and indexes. In production, run migrations instead."""
    # Import models so they register on Base.metadata
    from sleepfeed import models  # noqa: F401

    bind = bind or engine
    logger.info("Ensuring tables exist on %s", bind.url.render_as_string(hide_password=True))
    Base.metadata.create_all(bind=bind)

