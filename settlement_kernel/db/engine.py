"""
Process-wide engine and session factory.

``init_engine_from_url`` picks pooling by backend.  PostgreSQL gets a
``QueuePool`` at READ COMMITTED; the allocation path takes ``FOR UPDATE``
row locks wherever it needs more than that.  SQLite shares one connection
through ``StaticPool`` so an in-memory database outlives individual sessions.

Every accessor raises ``RuntimeError`` until the engine is initialized.
"""

import atexit

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from settlement_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _postgres_options(pool_size: int, max_overflow: int) -> dict:
    return {
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "isolation_level": "READ COMMITTED",
    }


_SQLITE_OPTIONS = {
    "poolclass": StaticPool,
    "connect_args": {"check_same_thread": False},
}


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
) -> Engine:
    """Create (or replace) the engine and its session factory."""
    global _engine, _session_factory

    backend = make_url(database_url).get_backend_name()
    options = _SQLITE_OPTIONS if backend == "sqlite" else _postgres_options(pool_size, max_overflow)

    _engine = create_engine(database_url, echo=echo, **options)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": backend, "echo": echo})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for per-thread sessions."""
    if _session_factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _session_factory


def get_session() -> Session:
    return get_session_factory()()


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


def create_tables() -> None:
    """Create the settlement schema and install the immutability listeners."""
    from settlement_kernel.db.base import Base
    from settlement_kernel.db.immutability import register_immutability_listeners
    import settlement_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())
    register_immutability_listeners()
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    from settlement_kernel.db.base import Base
    import settlement_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the factory."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)
