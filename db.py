"""
Database module for automation state storage.

This module provides a unified interface for database operations using
SQLAlchemy ORM. It stores workflow definitions and schedule state; the
records that workflows act on belong to an external record store.
"""

import logging
import threading
from typing import Any, List, Optional, Type, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from errors import PersistenceError, ErrorCode, error_context
from config import config

# Configure logger
logger = logging.getLogger(__name__)

# Create base model class
Base = declarative_base()

# Type variable for generic functions
T = TypeVar('T', bound=Base)


class Database:
    """Session factory plus error-wrapped add/get/query/update helpers."""

    def __init__(self, uri: Optional[str] = None):
        """
        Initialize the database connection and session factory.

        Creates the database engine, tables, and session factory.

        Args:
            uri: SQLAlchemy database URI (defaults to config.database.uri)
        """
        self.uri = uri or config.database.uri

        engine_options = {"echo": config.database.echo}
        if self.uri.startswith("sqlite"):
            # Share one connection across threads for in-memory databases
            engine_options["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.uri or self.uri in ("sqlite://", "sqlite:///"):
                engine_options["poolclass"] = StaticPool
        else:
            engine_options["pool_recycle"] = config.database.pool_recycle

        self._engine = create_engine(self.uri, **engine_options)

        # Create tables
        Base.metadata.create_all(self._engine)

        # Create session factory
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        logger.info(f"Database initialized with URI: {self.uri}")

    @property
    def engine(self):
        return self._engine

    def get_session(self) -> Session:
        """
        Get a new database session.

        Returns:
            SQLAlchemy Session

        Note:
            The caller is responsible for closing the session.
            Use with a context manager for automatic cleanup.
        """
        return self._session_factory()

    def add(self, obj: Base) -> Base:
        """
        Add a new object to the database.

        Raises:
            PersistenceError: If the object cannot be added
        """
        with error_context(
            component_name="database",
            operation="add",
            error_class=PersistenceError,
            error_code=ErrorCode.PERSISTENCE_ERROR,
            logger=logger
        ):
            with self.get_session() as session:
                session.add(obj)
                session.commit()
                session.refresh(obj)
                return obj

    def get(self, model: Type[T], id: Any) -> Optional[T]:
        with error_context(
            component_name="database",
            operation="get",
            error_class=PersistenceError,
            error_code=ErrorCode.PERSISTENCE_ERROR,
            logger=logger
        ):
            with self.get_session() as session:
                return session.get(model, id)

    def query(self, model: Type[T], *filters) -> List[T]:
        with error_context(
            component_name="database",
            operation="query",
            error_class=PersistenceError,
            error_code=ErrorCode.PERSISTENCE_ERROR,
            logger=logger
        ):
            with self.get_session() as session:
                query = session.query(model)
                if filters:
                    query = query.filter(*filters)
                return query.all()

    def update(self, obj: Base) -> Base:
        """
        Update an existing object in the database, inserting it if missing.

        Args:
            obj: Object to update

        Returns:
            The updated object

        Raises:
            PersistenceError: If the object cannot be updated
        """
        with error_context(
            component_name="database",
            operation="update",
            error_class=PersistenceError,
            error_code=ErrorCode.PERSISTENCE_ERROR,
            logger=logger
        ):
            with self.get_session() as session:
                # Use merge and return the merged instance which is attached to the session
                merged_obj = session.merge(obj)
                session.commit()
                session.refresh(merged_obj)
                return merged_obj


_database: Optional[Database] = None
_database_lock = threading.Lock()


def get_database() -> Database:
    """
    Get or create the database for the configured URI.

    Returns:
        The shared Database instance
    """
    global _database

    with _database_lock:
        if _database is None:
            _database = Database()

    return _database
