"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from servitech.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 5,
    "pool_recycle": 300,
    "pool_pre_ping": True,
}


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    """Engine options per backend: pooled for PostgreSQL, single-file friendly for SQLite."""
    if db_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return dict(_DEFAULT_POOL_KWARGS)


def build_engine(db_url: str, *, echo: bool = False) -> Engine:
    engine = create_engine(db_url, echo=echo, **_build_engine_kwargs(db_url))
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    logger.debug("Database engine created", extra={"dialect": engine.dialect.name})
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

_engine: Optional[Engine] = None
_engine_lock = threading.Lock()


def get_engine() -> Engine:
    """Return the process-wide engine, creating it from settings on first use."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = build_engine(settings.get_database_url(), echo=settings.database_echo)
                SessionLocal.configure(bind=_engine)
    return _engine


def init_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Bind ``SessionLocal`` (idempotent). Tests pass their own engine."""
    global _engine
    if engine is not None:
        with _engine_lock:
            _engine = engine
            SessionLocal.configure(bind=engine)
    else:
        get_engine()
    return SessionLocal


__all__ = [
    "Base",
    "SessionLocal",
    "build_engine",
    "get_engine",
    "init_session_factory",
]
