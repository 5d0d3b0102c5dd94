"""
Database engine and session management.
"""

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from utils.error_handling import StorageError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the way it is stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Database:
    """
    Owns the SQLAlchemy engine and hands out sessions.

    Args:
        url: SQLAlchemy database URL
        echo: Log every SQL statement
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        engine_args: Dict[str, Any] = {"echo": echo, "future": True}

        if url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
            # One shared connection, otherwise each connection gets its own empty database
            if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
                engine_args["poolclass"] = StaticPool
        else:
            engine_args["pool_pre_ping"] = True

        self.engine = create_engine(url, **engine_args)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info(f"Database engine created for {self.engine.url.render_as_string(hide_password=True)}")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'Database':
        section = config.get("database", {})
        return cls(section["url"], echo=bool(section.get("echo", False)))

    def create_all(self) -> None:
        """Create any missing tables."""
        from storage.tables import Base

        Base.metadata.create_all(self.engine)
        logger.info("Database tables created")

    def drop_all(self) -> None:
        from storage.tables import Base

        Base.metadata.drop_all(self.engine)

    def session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Transactional scope: commits on success, rolls back on any error.

        Raises:
            StorageError: If the database rejects the transaction
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise StorageError("Database operation failed", cause=e) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def check_connection(self) -> Optional[float]:
        """
        Run ``SELECT 1``.

        Returns:
            Round trip time in milliseconds, or None when the database is unreachable
        """
        start = time.time()
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Database connection check failed: {e}")
            return None
        return round((time.time() - start) * 1000, 2)

    def dispose(self) -> None:
        self.engine.dispose()
