"""Engine and session plumbing shared by the API, the workers and the services."""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config import DatabaseSettings, get_settings

logger = logging.getLogger(__name__)

SQLITE_PRAGMAS: tuple[str, ...] = (
    "PRAGMA foreign_keys=ON",
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=30000",
    "PRAGMA synchronous=NORMAL",
)

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def enable_sqlite_pragmas(engine: Engine) -> None:
    """Apply SQLITE_PRAGMAS to every connection the engine opens."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn: Any, _record: Any) -> None:
        cursor = dbapi_conn.cursor()
        try:
            for pragma in SQLITE_PRAGMAS:
                cursor.execute(pragma)
        finally:
            cursor.close()


def create_db_engine(db: DatabaseSettings, echo: bool = False) -> Engine:
    if db.uses_postgres:
        return create_engine(
            db.url,
            echo=echo,
            pool_size=db.pool_size,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
            pool_pre_ping=True,
        )
    engine: Engine = create_engine(db.url, echo=echo)
    enable_sqlite_pragmas(engine)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Rows stay readable after commit; results are projected once the unit of work ends.
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_db_engine(settings.database, echo=settings.debug)
        logger.info("Engine created for %s", settings.database.describe())
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """One unit of work: commit on success, full rollback on any exception."""
    session: Session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency for read paths."""
    with session_scope() as session:
        yield session


def reset_engine() -> None:
    """Drop the cached engine and session factory."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine, _session_factory = None, None
