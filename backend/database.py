"""Database setup and session management."""

import logging
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _connect_args(database_url: str) -> dict:
    """Driver arguments that bound how long a connection waits on the store.

    SQLite takes a busy timeout in seconds; PostgreSQL drivers take a
    connect timeout in whole seconds.
    """
    timeout = settings.DATABASE_TIMEOUT_SECONDS
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": timeout}
    if database_url.startswith("postgresql"):
        return {"connect_timeout": max(1, int(timeout))}
    return {}


@lru_cache
def get_engine():
    """Get or create the database engine (cached)."""
    database_url = settings.DATABASE_URL
    engine_kwargs = {}
    if not database_url.startswith("sqlite"):
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["pool_timeout"] = settings.DATABASE_TIMEOUT_SECONDS

    engine = create_engine(
        database_url,
        connect_args=_connect_args(database_url),
        echo=False,
        **engine_kwargs,
    )
    logger.info("Database engine created for %s", engine.url.render_as_string(hide_password=True))
    return engine


def get_session_local():
    """Get a sessionmaker bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db():
    """Dependency that provides a database session.

    Transaction conventions:
    - Default: services ``flush()``, API layer ``commit()``
    - Exceptions that commit internally:
      - ``WebhookIntake.record()``: the log row is committed before any
        side effect runs, so every delivery is durable
      - ``LinkSessionCompleter``: each public token commits its own
        Item/Account work so one failed token cannot roll back another
      - ``ItemStatusReconciler`` on permission revocation: commits the
        transition before the best-effort transaction archive
      - ``TransactionSyncService.sync_item()``: cursor pipeline with own commit
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
