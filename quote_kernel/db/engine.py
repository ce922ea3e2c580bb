"""
Module: quote_kernel.db.engine
Responsibility: owns the process-wide SQLAlchemy engine and session factory.

Services never open connections themselves; they receive the session
factory and open one session per unit of work, so a retried unit always
starts from a clean identity map.

Dialect behaviour:
    PostgreSQL  READ COMMITTED, pre-ping, recycled pool connections.  Writers
                that read-then-write take row locks (SELECT ... FOR UPDATE).
    SQLite      pysqlite's implicit transaction handling is switched off and
                every transaction starts with BEGIN IMMEDIATE.  Writers queue
                on the database lock for up to SQLITE_BUSY_TIMEOUT_SECONDS
                instead of failing a lock upgrade mid-transaction.  The
                resulting "database is locked" error is transient and is
                retried by the transaction runner.

Calling any accessor before init_engine_from_url() raises RuntimeError.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from quote_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

SQLITE_BUSY_TIMEOUT_SECONDS = 30


@dataclass
class _Binding:
    engine: Engine
    factory: sessionmaker[Session]
    dialect: str


_binding: _Binding | None = None


def _bound() -> _Binding:
    if _binding is None:
        raise RuntimeError("Database not initialized; call init_engine_from_url() first")
    return _binding


def _enable_immediate_transactions(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _configure_connection(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _dialect_options(
    dialect: str,
    *,
    pool_pre_ping: bool,
    pool_recycle: int,
) -> dict[str, Any]:
    if dialect == "sqlite":
        # One database file shared by worker threads.
        return {
            "connect_args": {
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
                "check_same_thread": False,
            },
        }
    return {
        "pool_pre_ping": pool_pre_ping,
        "pool_recycle": pool_recycle,
        "isolation_level": "READ COMMITTED",
    }


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Bind the package to a database.

    Accepts ``postgresql://`` (psycopg2) and ``sqlite:///`` URLs.  Calling it
    again disposes the previous engine and binds the new one.
    """
    global _binding

    dialect = make_url(database_url).get_backend_name()
    engine = create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        **_dialect_options(dialect, pool_pre_ping=pool_pre_ping, pool_recycle=pool_recycle),
    )
    if dialect == "sqlite":
        _enable_immediate_transactions(engine)

    reset_engine()
    _binding = _Binding(
        engine=engine,
        factory=sessionmaker(bind=engine, expire_on_commit=False),
        dialect=dialect,
    )

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "pool_size": pool_size, "max_overflow": max_overflow},
    )
    return engine


def get_engine() -> Engine:
    return _bound().engine


def get_session_factory() -> sessionmaker[Session]:
    """The factory services are constructed with."""
    return _bound().factory


def get_session() -> Session:
    return _bound().factory()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One session, one transaction: commit on success, roll back and re-raise
    on error, always close.
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from quote_kernel.db.base import Base
    import quote_kernel.models  # noqa: F401  (registers every table)

    return Base.metadata


def create_tables() -> None:
    """Create the schema and arm the snapshot immutability listeners."""
    from quote_kernel.db.immutability import register_immutability_listeners

    metadata = _metadata()
    metadata.create_all(get_engine())
    register_immutability_listeners()
    logger.info("tables_created", extra={"tables": sorted(metadata.tables)})


def drop_tables() -> None:
    """Drop every table. Tests only."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the current engine, if any, and unbind."""
    global _binding

    if _binding is not None:
        _binding.engine.dispose()
    _binding = None
