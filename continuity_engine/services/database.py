"""
Continuity Engine - Database Engine and Session Lifecycle
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from continuity_engine.config import settings
from continuity_engine.exceptions import StorageError
from continuity_engine.models import Base

logger = logging.getLogger(__name__)


def get_engine(database_url: Optional[str] = None, **kwargs) -> Engine:
    """Create a SQLAlchemy engine for the record store"""
    url = database_url or settings.get_database_url()
    options = {"echo": settings.database_echo, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options["pool_size"] = settings.database_pool_size
    options.update(kwargs)

    try:
        return create_engine(url, **options)
    except SQLAlchemyError as e:
        logger.error(f"Failed to create engine: {e}")
        raise StorageError("create_engine", str(e)) from e


def create_tables(engine: Engine) -> Engine:
    """Create missing tables (idempotent)"""
    try:
        existing = set(inspect(engine).get_table_names())
        expected = set(Base.metadata.tables.keys())

        if expected.issubset(existing):
            logger.info("All tables exist. Skipping creation.")
            return engine

        missing = sorted(expected - existing)
        logger.info(f"Creating tables: {', '.join(missing)}")
        Base.metadata.create_all(engine)
        return engine
    except SQLAlchemyError as e:
        raise StorageError("create_tables", str(e)) from e


def get_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Scoped unit of work: commit on success, roll back on any error

    Usage:
        with session_scope(factory) as session:
            writer = ContinuityWriter(SqlRecordStore(session))
            writer.create_observation_with_context(request)
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Transaction rolled back: {e}", exc_info=True)
        raise StorageError("commit", str(e)) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
