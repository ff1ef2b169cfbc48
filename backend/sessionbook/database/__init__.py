"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Any, Dict, Generator, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..core.config import settings

logger = logging.getLogger(__name__)


def build_engine_kwargs(db_url: str) -> Dict[str, Any]:
    """Engine options for the configured backend."""
    if db_url.startswith("sqlite"):
        # Sweeps and the booking critical section run on worker threads.
        return {"connect_args": {"check_same_thread": False}, "future": True}
    return {
        "pool_size": 5,
        "max_overflow": 5,
        "pool_timeout": settings.database_pool_timeout_seconds,
        "pool_pre_ping": True,
        "future": True,
    }


def configure_sqlite_transactions(db_engine: Engine) -> None:
    """
    Let SQLAlchemy emit BEGIN instead of pysqlite.

    pysqlite starts transactions lazily and only before DML, which breaks
    SAVEPOINT nesting and lets plain reads run outside the unit of work.
    """

    @event.listens_for(db_engine, "connect")
    def disable_driver_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(db_engine, "begin")
    def emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def create_db_engine(db_url: str, **overrides: Any) -> Engine:
    engine_kwargs = build_engine_kwargs(db_url)
    engine_kwargs.update(overrides)
    db_engine = create_engine(db_url, **engine_kwargs)
    if db_engine.dialect.name == "sqlite":
        configure_sqlite_transactions(db_engine)

    @event.listens_for(db_engine, "connect")
    def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
        connection_record.info["connect_time"] = datetime.now()
        logger.debug("Database connection established")

    return db_engine


engine: Engine = create_db_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """Session for background work; the caller's services own commits."""
    db = factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
