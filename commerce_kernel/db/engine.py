"""
Module: commerce_kernel.db.engine
Responsibility: the process-wide SQLAlchemy engine and session factory, the
    transactional ``session_scope`` helper, schema creation for local runs
    and tests, and classification of retryable database failures.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, selectors/, domain/, or outer layers
    (create_tables/drop_tables import models to register their tables).

Backends:
    PostgreSQL (production): QueuePool with pre-ping, READ COMMITTED.  Every
        check-then-act in the services locks its rows with FOR UPDATE.
    SQLite file (local runs, test suite): pysqlite's implicit transactions
        are switched off and every transaction opens with BEGIN IMMEDIATE,
        so writers queue on the database lock.  FOR UPDATE is a no-op there
        and the write lock is what serializes check-then-act.

Failure modes:
    - RuntimeError when the engine is used before init_engine_from_url().
    - ValueError for in-memory SQLite URLs (threads would not share data).
    - OperationalError when a lock wait times out or PostgreSQL reports a
      deadlock; is_transient_error() marks those as retryable.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from commerce_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

# Lower-cased fragments of driver messages that a whole-unit retry can cure
_TRANSIENT_MARKERS = (
    "deadlock",
    "could not serialize",
    "database is locked",
    "database table is locked",
)


def _sqlite_engine(url: URL, echo: bool, pool_timeout: int, busy_timeout: float) -> Engine:
    if url.database in (None, "", ":memory:"):
        raise ValueError("In-memory SQLite is not supported; use a file path")
    engine = create_engine(
        url,
        echo=echo,
        pool_timeout=pool_timeout,
        connect_args={"timeout": busy_timeout, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        # pysqlite's own BEGIN would defeat SAVEPOINT and BEGIN IMMEDIATE
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def _postgres_engine(
    url: URL,
    echo: bool,
    pool_size: int,
    max_overflow: int,
    pool_pre_ping: bool,
    pool_timeout: int,
    pool_recycle: int,
) -> Engine:
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create the engine and session factory for ``database_url``.

    Pool options apply to PostgreSQL; ``sqlite_busy_timeout`` is how long a
    SQLite writer waits for the file lock.  Sessions from the factory keep
    their objects loaded after commit (``expire_on_commit=False``) so DTOs
    can be built from them.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    dialect = url.get_backend_name()
    if dialect == "sqlite":
        engine = _sqlite_engine(url, echo, pool_timeout, sqlite_busy_timeout)
    else:
        engine = _postgres_engine(
            url, echo, pool_size, max_overflow, pool_pre_ping, pool_timeout, pool_recycle,
        )

    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "pool_size": None if dialect == "sqlite" else pool_size,
            "echo": echo,
        },
    )
    return engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for per-request (or per-thread) sessions."""
    return _require_factory()


def get_session() -> Session:
    return _require_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    A session that commits on normal exit and rolls back on error.

    For callers driving services directly.  WorkflowOrchestrator commits on
    its own; give it a plain session instead.
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def is_transient_error(exc: BaseException) -> bool:
    """True for database failures that a full-unit retry can cure."""
    if not isinstance(exc, DBAPIError):
        return False
    text = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def create_tables() -> None:
    from commerce_kernel.db.base import Base
    import commerce_kernel.models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every kernel table.  Tests and local resets only."""
    from commerce_kernel.db.base import Base
    import commerce_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
