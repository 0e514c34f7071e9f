"""
Engine construction and the transactional session scope.

Two ways in:

- ``build_engine(url)`` returns a standalone Engine.  Tests and the
  concurrency suite use it directly with their own sessionmaker.
- ``init_engine_from_url(url)`` builds the process-wide engine that
  ``get_session_factory()`` and ``create_tables()`` fall back to.  The
  PM generation script uses this path.

Backends:
    PostgreSQL runs at READ COMMITTED; the ledger adds FOR UPDATE on the
    item row.  SQLite ignores FOR UPDATE, so the versioned UPDATE is the
    only guard there: the losing writer gets StaleDataError (or "database
    is locked" once the busy timeout passes) and AtomicRetry tries again.

Kernel > DB.  Model packages are imported by name in ``create_tables`` so
this module does not depend on them statically.
"""

import importlib
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cmms_kernel.db.base import Base
from cmms_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

MODEL_MODULES: tuple[str, ...] = (
    "cmms_kernel.models",
    "cmms_kernel.services.sequence_service",
    "cmms_batch.models",
)

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _sqlite_on_connect(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 5.0,
) -> Engine:
    """
    Engine for ``database_url`` with backend-specific pooling.

    An in-memory SQLite database lives inside one connection, so it gets a
    StaticPool; every session then sees the same tables.  File SQLite gets
    one connection per thread with ``sqlite_busy_timeout`` seconds of
    waiting on a locked database.  Pool settings apply to server backends.
    """
    url = make_url(database_url)

    if url.get_backend_name() != "sqlite":
        return create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )

    options: dict = {
        "echo": echo,
        "connect_args": {"check_same_thread": False, "timeout": sqlite_busy_timeout},
    }
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    engine = create_engine(url, **options)
    event.listen(engine, "connect", _sqlite_on_connect)
    return engine


def init_engine_from_url(database_url: str, **engine_options) -> Engine:
    """Build the process-wide engine, replacing any previous one."""
    global _engine, _session_factory

    reset_engine()
    _engine = build_engine(database_url, **engine_options)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "database": _engine.url.database},
    )
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Factory bound to the process-wide engine.

    AtomicRetry takes the factory, not a session: each attempt opens its own.

    Raises:
        RuntimeError: init_engine_from_url() has not run.
    """
    if _session_factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _session_factory


def reset_engine() -> None:
    """Dispose the process-wide engine, if any."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    One session, one transaction: commit on clean exit, roll back and
    re-raise otherwise, close in both cases.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _target(engine: Engine | None) -> Engine:
    if engine is not None:
        return engine
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def create_tables(engine: Engine | None = None) -> None:
    """Create every table from the model modules that are installed."""
    for module_name in MODEL_MODULES:
        try:
            importlib.import_module(module_name)
        except ModuleNotFoundError as exc:
            # A missing package is fine; a broken import inside one is not
            if exc.name != module_name.split(".")[0]:
                raise
            logger.debug("model_module_not_installed", extra={"module": module_name})

    target = _target(engine)
    Base.metadata.create_all(target)
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables(engine: Engine | None = None) -> None:
    Base.metadata.drop_all(_target(engine))
