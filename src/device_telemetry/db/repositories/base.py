"""Base repository pattern for database access.

This module provides a generic repository that the entity repositories
extend. Every read is tenant-scoped: there is no unscoped lookup.
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy.orm import Query, Session

from device_telemetry.db.models import Base

# Type variable for generic repository
T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Generic tenant-scoped repository.

    Example:
        class DeviceRepository(BaseRepository[DeviceRegistration]):
            def __init__(self, session: Session):
                super().__init__(session, DeviceRegistration)
    """

    def __init__(self, session: Session, model: type[T]):
        """Initialize the repository.

        Args:
            session: SQLAlchemy session for database operations
            model: The SQLAlchemy model class this repository manages
        """
        self.session = session
        self.model = model

    def _scoped(self, tenant_id: str) -> Query:
        if not tenant_id:
            raise ValueError(f"tenant_id is required to query {self.model.__tablename__}")
        return self.session.query(self.model).filter(self.model.tenant_id == tenant_id)

    def get_by_id(self, id: Any, tenant_id: str) -> T | None:
        """Get a single entity by ID within a tenant.

        Args:
            id: The entity ID
            tenant_id: Tenant that must own the entity

        Returns:
            The entity if found, None otherwise
        """
        return self._scoped(tenant_id).filter(self.model.id == id).first()

    def create(self, entity: T) -> T:
        """Add a new entity and flush to get generated IDs."""
        self.session.add(entity)
        self.session.flush()
        return entity

    def create_many(self, entities: list[T]) -> list[T]:
        """Add multiple entities in one flush."""
        self.session.add_all(entities)
        self.session.flush()
        return entities

