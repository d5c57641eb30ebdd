"""
SQLAlchemy session factory.

Reads connection parameters from environment variables and provides a
``SessionLocal`` sessionmaker plus a ``get_session`` context manager.

Environment variables
---------------------
``DATABASE_URL``
    Full SQLAlchemy connection URL.  Default:
    ``sqlite:///data/song_fame.db``

``DB_POOL_SIZE``
    Number of persistent connections in the pool (default ``5``).
    Ignored for SQLite.

``DB_MAX_OVERFLOW``
    Extra connections allowed above ``pool_size`` under burst
    load (default ``10``).  Ignored for SQLite.
"""

import os
from collections.abc import Generator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

DATABASE_URL: str = os.getenv(
    "DATABASE_URL",
    "sqlite:///data/song_fame.db",
)

_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))


def build_engine(url: str = DATABASE_URL) -> Engine:
    """Create an engine, with pool sizing only for server databases.

    SQLite transactions start with ``BEGIN IMMEDIATE`` so concurrent
    writers queue on the database lock instead of both reading the same
    favourite slots and failing at commit.
    """
    if url.startswith("sqlite"):
        sqlite_engine = create_engine(url, connect_args={"check_same_thread": False})
        _begin_immediate(sqlite_engine)
        return sqlite_engine
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=_pool_size,
        max_overflow=_max_overflow,
    )


def _begin_immediate(sqlite_engine: Engine) -> None:
    @event.listens_for(sqlite_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record) -> None:
        # pysqlite otherwise issues its own deferred BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = build_engine()

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)


def get_session() -> Generator[Session, None, None]:
    """Yield a SQLAlchemy session, closing it on exit."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
