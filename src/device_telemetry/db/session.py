"""Database session management.

This module provides session management for the telemetry store.
It handles engine creation (SQLite by default, PostgreSQL via
TELEMETRY_DB_URL), session lifecycle and schema creation.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from threading import Lock

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from device_telemetry.config.settings import get_settings
from device_telemetry.db.models import Base
from device_telemetry.observability.otel import instrument_engine


class DatabaseSession:
    """Manages database connections and sessions.

    This class provides a thread-safe singleton pattern for database connectivity,
    handling connection pooling and session creation.

    Example:
        # Initialize once at startup
        db = DatabaseSession()

        # Use in a context manager
        with db.session() as session:
            integration = session.query(Integration).filter_by(id=integration_id).first()
    """

    _instance: DatabaseSession | None = None
    _engine: Engine | None = None
    _session_factory: sessionmaker | None = None
    _lock: Lock = Lock()  # Thread-safe singleton lock

    def __new__(cls, url: str | None = None) -> DatabaseSession:
        """Thread-safe singleton pattern for database session."""
        if cls._instance is None:
            with cls._lock:
                # Double-check locking pattern
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, url: str | None = None):
        """Initialize the database session manager.

        Args:
            url: Optional database URL overriding settings. Only honoured
                 on first initialization.
        """
        if self._engine is None:
            with self._lock:
                # Double-check to avoid race condition during initialization
                if self._engine is None:
                    self._initialize(url)

    def _initialize(self, url: str | None = None) -> None:
        """Initialize the database engine and session factory."""
        settings = get_settings()
        db = settings.database
        connection_string = url or db.resolved_url

        if connection_string.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if connection_string in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every session sees the same in-memory schema
                kwargs["poolclass"] = StaticPool
        else:
            kwargs = {
                "pool_size": db.pool_size,
                "max_overflow": 10,
                "pool_timeout": 30,
                "pool_recycle": db.pool_recycle,
                "pool_pre_ping": True,
            }

        self._engine = create_engine(connection_string, echo=db.echo, **kwargs)
        instrument_engine(self._engine)
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        if self._engine is None:
            self._initialize()
        return self._engine

    def get_session(self) -> Session:
        """Get a new database session.

        Note:
            Caller is responsible for closing the session.
        """
        if self._session_factory is None:
            self._initialize()
        return self._session_factory()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Context manager for database sessions.

        Commits on success, rolls back and re-raises on error.

        Example:
            with db.session() as session:
                devices = session.query(DeviceRegistration).all()
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """Create any missing tables."""
        Base.metadata.create_all(self.engine)

    def test_connection(self) -> bool:
        """Test if database connection is working.

        Returns:
            True if connection is healthy, False otherwise
        """
        try:
            with self.session() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception:
            return False

    def close(self) -> None:
        """Close all connections and dispose of the engine."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton instance.

        Primarily useful for testing.
        """
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None


def init_db(url: str | None = None) -> DatabaseSession:
    """Initialize the store and create its tables."""
    db = DatabaseSession(url)
    db.create_all()
    return db
