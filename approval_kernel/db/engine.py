"""
Module: approval_kernel.db.engine
Responsibility: Build SQLAlchemy engines for the supported dialects, hold the
    process-wide session factory used by the command-line entrypoints, and
    create or drop the schema.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/triggers.py.  ``create_tables``/``drop_tables`` import the models so
    that ``Base.metadata`` is complete.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; the engine takes explicit row locks
      (``SELECT ... FOR UPDATE``) on workflow instances.
    - SQLite waits up to 30s on a locked database, so concurrent writers
      queue instead of failing at once.  In-memory SQLite shares a single
      connection so every session sees the same database.
    - History triggers are installed with the tables on PostgreSQL.

Failure modes:
    - RuntimeError from ``get_session_factory`` before
      ``init_engine_from_url``.
"""

import atexit

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from approval_kernel.logging_config import get_logger

logger = get_logger("db.engine")

SQLITE_BUSY_TIMEOUT_SECONDS = 30

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _is_sqlite_memory(database_url: str) -> bool:
    return ":memory:" in database_url or database_url.rstrip("/") in (
        "sqlite:",
        "sqlite+pysqlite:",
    )


def build_engine(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """Create an engine for ``database_url``.

    ``pool_options`` (``pool_size``, ``max_overflow``...) apply to server
    databases only.
    """
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
        if _is_sqlite_memory(database_url):
            return create_engine(
                database_url, echo=echo, connect_args=connect_args, poolclass=StaticPool,
            )
        return create_engine(database_url, echo=echo, connect_args=connect_args)

    options = {"pool_size": 10, "max_overflow": 10, "pool_pre_ping": True, "pool_recycle": 1800}
    options.update(pool_options)
    return create_engine(database_url, echo=echo, isolation_level="READ COMMITTED", **options)


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """Build the process-wide engine and session factory.

    A second call replaces the first.
    """
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = build_engine(database_url, echo=echo, **pool_options)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name, "echo": echo})
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Session factory bound to the engine from ``init_engine_from_url``."""
    if _session_factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _session_factory


def _resolve(engine: Engine | None) -> Engine:
    if engine is not None:
        return engine
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def create_tables(engine: Engine | None = None, install_triggers: bool = True) -> None:
    """Create every workflow table.

    On PostgreSQL the append-only history triggers are installed as well;
    SQLite relies on the ORM listeners alone.
    """
    from approval_kernel.db.base import Base
    import approval_kernel.models  # noqa: F401  (registers all tables)

    engine = _resolve(engine)
    Base.metadata.create_all(engine)

    if install_triggers and engine.dialect.name == "postgresql":
        from approval_kernel.db.triggers import install_history_triggers

        install_history_triggers(engine)
    logger.info("tables_created", extra={"dialect": engine.dialect.name})


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every workflow table (and the PostgreSQL triggers).  Tests only."""
    from approval_kernel.db.base import Base
    import approval_kernel.models  # noqa: F401

    engine = _resolve(engine)
    if engine.dialect.name == "postgresql":
        from approval_kernel.db.triggers import uninstall_history_triggers

        uninstall_history_triggers(engine)
    Base.metadata.drop_all(engine)


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
