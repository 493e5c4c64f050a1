"""
Module: ledger_kernel.db.engine
Responsibility: Engine initialization, session factory and the caller's
    commit-or-rollback scope.
Architecture position: Kernel > DB.  Imports models only inside
    create_tables() so that metadata is populated.

PostgreSQL (psycopg2) runs at READ COMMITTED; correctness under concurrency
comes from the explicit SELECT ... FOR UPDATE locks taken by the services.
SQLite serves local runs and the test suite.  pysqlite's own transaction
handling is switched off there so that SAVEPOINT, which every facade
operation runs inside, behaves.

get_engine()/get_session() raise RuntimeError until init_engine_from_url()
has been called.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def _sqlite_engine(url: URL, echo: bool) -> Engine:
    in_memory = url.database in (None, "", ":memory:")
    engine = create_engine(
        url,
        echo=echo,
        # one shared connection, otherwise each checkout sees an empty database
        poolclass=StaticPool if in_memory else None,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def _postgres_engine(url: URL, echo: bool, **pool_options) -> Engine:
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        isolation_level="READ COMMITTED",
        **pool_options,
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Args:
        database_url: postgresql://... or sqlite://... URL.
        echo: If True, log all SQL statements.
        pool_size, max_overflow, pool_pre_ping, pool_timeout: PostgreSQL
            connection pool settings; ignored for SQLite.

    Returns:
        The new Engine.
    """
    global _engine, _session_factory

    url = make_url(database_url)
    dialect = url.get_backend_name()
    if dialect == "sqlite":
        _engine = _sqlite_engine(url, echo)
    else:
        _engine = _postgres_engine(
            url,
            echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
        )
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": dialect, "echo": echo})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session() -> Session:
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Commit on normal exit; roll back, log and re-raise on exception.

    Usage:
        with session_scope() as session:
            core = LedgerPostingCore(session, settings, products, rates)
            core.approve(document_id, actor_id)
    """
    session = get_session()
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every ledger table on the current engine."""
    from ledger_kernel.db.base import Base
    import ledger_kernel.models  # noqa: F401  registers mapped classes
    import ledger_kernel.services.sequence_service  # noqa: F401  sequence counters

    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.sorted_tables)})


def drop_tables() -> None:
    from ledger_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
