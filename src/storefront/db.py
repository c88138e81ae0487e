"""
Engine, session factory and declarative base.

The engine is built lazily from ``config.database`` so importing the models
never opens a connection. Tests and scripts call ``init_db(url)`` to rebind
everything to another database.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import BigInteger, Integer, JSON, create_engine, event, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.core.config import DatabaseConfig, config, normalize_database_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

Base = declarative_base()

# SQLite only auto-increments INTEGER PRIMARY KEY columns
BigId = BigInteger().with_variant(Integer, "sqlite")

JSONType = JSON().with_variant(JSONB, "postgresql")

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_config: DatabaseConfig) -> Engine:
    """Build a pooled engine from configuration."""
    url = normalize_database_url(db_config.url)

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            # every checkout must see the same in-memory database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=db_config.echo, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(
        url,
        echo=db_config.echo,
        pool_size=db_config.pool_size,
        max_overflow=db_config.max_overflow,
        pool_timeout=db_config.pool_timeout,
        pool_recycle=db_config.pool_recycle,
        pool_pre_ping=True,
        connect_args={"connect_timeout": db_config.connect_timeout},
    )


def init_db(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """(Re)bind the module engine and session factory."""
    global _engine, _session_factory

    db_config = DatabaseConfig(
        url=url or config.database.url,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
        pool_timeout=config.database.pool_timeout,
        pool_recycle=config.database.pool_recycle,
        echo=config.database.echo if echo is None else echo,
        connect_timeout=config.database.connect_timeout,
    )

    if _engine is not None:
        _engine.dispose()

    _engine = create_db_engine(db_config)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.info(f"Database engine initialised for {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_db()
    return _engine


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        init_db()
    return _session_factory


@contextmanager
def get_connection():
    """Raw connection for Core/text() statements."""
    with get_engine().connect() as conn:
        yield conn


@contextmanager
def get_session():
    """Session that commits on success and rolls back on any error."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping(engine: Optional[Engine] = None) -> bool:
    """Run ``SELECT 1`` against the database."""
    engine = engine or get_engine()
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("Database connection established successfully")
    return True


class TransactionManager:
    """Runs a callable inside one session-level transaction."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_session_factory()

    def run(self, fn: Callable[[Session], Any]) -> None:
        self.run_with_result(fn)

    def run_with_result(self, fn: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            with session.begin():
                return fn(session)
        finally:
            session.close()
