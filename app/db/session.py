import logging
import os
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections are shared with the batch worker threads, so the
    same-thread check is disabled; in-memory databases additionally need a
    single static connection or every session would see an empty database.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def _probe(engine: Engine) -> None:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        url = engine.url
        logger.warning(
            "Database unreachable (%s); imports will fail until it recovers. "
            "dialect=%s host=%s database=%s SKIP_DB_INIT=%r",
            exc,
            url.get_backend_name(),
            url.host or "localhost",
            url.database,
            os.getenv("SKIP_DB_INIT"),
        )


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url)
        # Surface connection problems at startup rather than on the first import.
        _probe(_engine)
    return _engine


def get_session_local() -> sessionmaker:
    """Session factory bound to the process-wide engine, created on first use."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _session_factory
