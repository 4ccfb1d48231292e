"""
Module: stock_kernel.db.engine
Responsibility: Own the process-wide SQLAlchemy engine and session factory,
    and provide the unit-of-work scope used by the HTTP layer.
Architecture position: Kernel > DB.  Imports db/base.py and, lazily, the
    model registry (for create_tables).  Nothing above the DB layer.

Invariants enforced:
    - SQLite connections enforce foreign keys and let SQLAlchemy emit BEGIN,
      so row locks and SAVEPOINTs behave as on PostgreSQL.
    - In-memory SQLite uses one shared StaticPool connection, reachable from
      any thread (the ASGI server runs sync endpoints in a thread pool).
    - PostgreSQL runs READ COMMITTED with pre-pinged pooled connections.

Failure modes:
    - RuntimeError when a session or engine is requested before
      init_engine_from_url().

Audit relevance:
    session_scope() commits a stock movement together with its audit rows,
    or rolls both back.
"""

from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stock_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Database engine not initialized; call init_engine_from_url() first"


def _sqlite_options(url: URL) -> dict[str, Any]:
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    return options


def _postgres_options(pool_size: int, max_overflow: int) -> dict[str, Any]:
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "isolation_level": "READ COMMITTED",
    }


def _enable_sqlite_transactions(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, _record):
        # pysqlite's own BEGIN handling is switched off; the "begin" hook issues it
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _begin(connection):
        connection.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
) -> Engine:
    """
    Create the engine and session factory, replacing any previous ones.

    Args:
        database_url: ``sqlite:///:memory:``, ``sqlite:///stock.db`` or a
            ``postgresql://`` URL.
        echo: Log every SQL statement.
        pool_size: Pooled connections (PostgreSQL only).
        max_overflow: Connections allowed beyond ``pool_size`` (PostgreSQL only).
    """
    global _engine, _session_factory

    reset_engine()
    url = make_url(database_url)
    backend = url.get_backend_name()

    if backend == "sqlite":
        engine = create_engine(url, echo=echo, **_sqlite_options(url))
        _enable_sqlite_transactions(engine)
    else:
        engine = create_engine(url, echo=echo, **_postgres_options(pool_size, max_overflow))

    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    logger.info("engine_initialized", extra={"dialect": backend, "echo": echo})
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session() -> Session:
    """A new session bound to the current engine."""
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    One unit of work: commit on success, roll back and re-raise on error.

    Usage::

        with session_scope() as session:
            StockService(session, auditor, clock).receive_stock(...)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.info("transaction_rolled_back")
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every table registered on ``Base.metadata``."""
    from stock_kernel.db.base import Base
    import stock_kernel.models  # noqa: F401  (registers every table)

    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
