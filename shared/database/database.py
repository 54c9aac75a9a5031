# shared/database/database.py - Per-document SQLite connection and session management
"""
Database connection and session management for the comment analysis pipeline.

Every regulation document gets its own SQLite file ({db_dir}/{document_id}.sqlite),
so managers are created per document and cached by get_db_manager().
"""

import os
import logging
import threading
import time
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Dict, Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, DeclarativeBase

from shared.config.config import SQL_ECHO

logger = logging.getLogger(__name__)


# Create the declarative base for models using SQLAlchemy 2.0 style
class Base(DeclarativeBase):
    pass


class DatabaseError(Exception):
    """Custom exception for database-related errors."""
    pass


def resolve_db_dir(db_dir: Optional[str] = None) -> Path:
    """Database directory from argument, COMMENT_DB_DIR, or config.yaml."""
    if db_dir:
        return Path(db_dir)
    env_dir = os.getenv("COMMENT_DB_DIR")
    if env_dir:
        return Path(env_dir)
    from shared.utils.utils import cfg
    return Path(cfg.section('database').get('db_dir', 'dbs'))


class DatabaseManager:
    """
    Connection manager for one document database with
    error handling and health monitoring.
    """

    def __init__(self, document_id: str, db_dir: Optional[str] = None, create: bool = True):
        self.document_id = document_id
        self.db_dir = resolve_db_dir(db_dir)
        self.db_path = self.db_dir / f"{document_id}.sqlite"
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None
        self._connection_retries = 3
        self._retry_delay = 1  # seconds
        if not create and not self.db_path.exists():
            raise DatabaseError(f"Database not found for document {document_id}: {self.db_path}")
        self._setup_connection()
        if create:
            self.init_schema()

    def _get_database_url(self) -> str:
        return f"sqlite:///{self.db_path}"

    def _get_engine_options(self) -> dict:
        from shared.utils.utils import cfg
        busy_timeout = cfg.section('database').get('busy_timeout', 30)
        return {
            "echo": SQL_ECHO,
            "connect_args": {
                "timeout": busy_timeout,
                "check_same_thread": False,
            },
        }

    def _setup_connection(self):
        """Initialize database engine and session factory with retry logic."""
        self.db_dir.mkdir(parents=True, exist_ok=True)
        database_url = self._get_database_url()
        engine_options = self._get_engine_options()

        for attempt in range(self._connection_retries):
            try:
                self.engine = create_engine(database_url, **engine_options)
                self._setup_event_listeners()

                with self.engine.connect() as conn:
                    conn.execute(text("SELECT 1"))

                self.SessionLocal = sessionmaker(
                    bind=self.engine,
                    autoflush=True,
                    expire_on_commit=False
                )

                logger.info(f"Database ready: {self.db_path}")
                return

            except SQLAlchemyError as e:
                logger.error(f"Database connection attempt {attempt + 1} failed: {e}")
                if attempt < self._connection_retries - 1:
                    time.sleep(self._retry_delay * (attempt + 1))
                else:
                    raise ConnectionError(
                        f"Failed to open database after {self._connection_retries} attempts: {e}"
                    )

    def _setup_event_listeners(self):
        """Setup SQLAlchemy event listeners for connection settings."""

        @event.listens_for(self.engine, "connect")
        def set_sqlite_pragmas(dbapi_connection, connection_record):
            """WAL lets the dashboard read while the pipeline writes."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    def init_schema(self):
        """Create all tables. Models must be imported so they register on Base."""
        import shared.models.models  # noqa: F401
        import shared.models.models_perspective  # noqa: F401

        Base.metadata.create_all(self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions with automatic transaction handling.

        Usage:
            with db_manager.get_session() as session:
                session.add(obj)
                # Automatic commit on success, rollback on exception
        """
        if not self.SessionLocal:
            raise RuntimeError("Database not initialized. Call _setup_connection() first.")

        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()


_managers: Dict[tuple, DatabaseManager] = {}
_managers_lock = threading.Lock()


def get_db_manager(document_id: str, db_dir: Optional[str] = None, create: bool = True) -> DatabaseManager:
    """
    Cached DatabaseManager for a document.

    With create=False a missing database file raises DatabaseError.
    """
    key = (document_id, str(resolve_db_dir(db_dir).resolve()))
    with _managers_lock:
        if key not in _managers:
            _managers[key] = DatabaseManager(document_id, db_dir, create=create)
        return _managers[key]


def get_engine(document_id: str, db_dir: Optional[str] = None) -> Engine:
    """Get the SQLAlchemy engine for a document database."""
    return get_db_manager(document_id, db_dir).engine


def init_database(document_id: str, db_dir: Optional[str] = None) -> DatabaseManager:
    """Create (if needed) and return the document database."""
    manager = get_db_manager(document_id, db_dir)
    manager.init_schema()
    logger.info(f"Database tables created for {document_id}")
    return manager


def list_documents(db_dir: Optional[str] = None):
    """Document ids that have a database file."""
    directory = resolve_db_dir(db_dir)
    if not directory.exists():
        return []
    return sorted(p.stem for p in directory.glob("*.sqlite"))


def handle_db_error(func):
    """
    Decorator that turns SQLAlchemy failures into DatabaseError.

    Usage:
        @handle_db_error
        def save_comment(manager, ...):
            ...
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Database error in {func.__name__}: {e}")
            raise DatabaseError(f"Database operation failed: {e}") from e
    return wrapper


__all__ = [
    'Base',
    'DatabaseManager',
    'DatabaseError',
    'resolve_db_dir',
    'get_db_manager',
    'get_engine',
    'init_database',
    'list_documents',
    'handle_db_error',
]
