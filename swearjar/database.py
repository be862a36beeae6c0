"""
Database engine, session factory, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - build_engine(): Creates an async engine for a database URL
  - engine / AsyncSessionLocal: The application's default engine and session factory
  - Base: Declarative base class that all ORM models inherit from

Unlike a classic session-per-request setup, sessions are not handed to route
handlers directly. The LedgerStore (services/ledger_store.py) owns the session
factory and opens one unit of work per ledger operation, so that a jar's lock
can be held until the unit has committed.

SQLite note:
  Writers are serialized by SQLite's database lock. Units of work open with
  BEGIN IMMEDIATE, so a writer takes that lock up front and a second one
  waits for it (up to `timeout` seconds) rather than failing midway with
  "database is locked" when two jars are written concurrently.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from swearjar.config import settings


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, applying SQLite-specific connect arguments when needed."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["timeout"] = 30
    engine = create_async_engine(database_url, echo=echo, connect_args=connect_args)
    if engine.dialect.name == "sqlite":
        _begin_immediate(engine)
    return engine


def _begin_immediate(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        # The driver's implicit deferred BEGIN is replaced by the one below
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: returned ORM objects stay readable after the
    # unit of work commits and the session closes.
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# echo=True in debug mode logs all SQL statements
engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
AsyncSessionLocal = build_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass
