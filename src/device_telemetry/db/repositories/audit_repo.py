"""Repository for the integration audit trail (append-only)."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from device_telemetry.db.models import IntegrationAuditLog
from device_telemetry.db.repositories.base import BaseRepository


class AuditRepository(BaseRepository[IntegrationAuditLog]):
    def __init__(self, session: Session):
        super().__init__(session, IntegrationAuditLog)

    def query(
        self,
        tenant_id: str,
        integration_id: str | None = None,
        event_category: str | None = None,
        event_type: str | None = None,
        device_registration_id: str | None = None,
        from_date: datetime | None = None,
        limit: int = 100,
    ) -> list[IntegrationAuditLog]:
        """Audit entries of a tenant, newest first."""
        query = self._scoped(tenant_id)
        if integration_id:
            query = query.filter(IntegrationAuditLog.integration_id == integration_id)
        if event_category:
            query = query.filter(IntegrationAuditLog.event_category == event_category)
        if event_type:
            query = query.filter(IntegrationAuditLog.event_type == event_type)
        if device_registration_id:
            query = query.filter(IntegrationAuditLog.device_registration_id == device_registration_id)
        if from_date:
            query = query.filter(IntegrationAuditLog.timestamp >= from_date)
        return (
            query.order_by(IntegrationAuditLog.timestamp.desc(), IntegrationAuditLog.id.desc())
            .limit(limit)
            .all()
        )

    def count_by_category(
        self,
        event_types: tuple[str, ...],
        tenant_id: str | None = None,
        since: datetime | None = None,
    ) -> dict[str, int]:
        """Counts per event_category for the given event types."""
        query = self.session.query(
            IntegrationAuditLog.event_category, func.count(IntegrationAuditLog.id)
        ).filter(IntegrationAuditLog.event_type.in_(event_types))
        if tenant_id:
            query = query.filter(IntegrationAuditLog.tenant_id == tenant_id)
        if since:
            query = query.filter(IntegrationAuditLog.timestamp >= since)
        return {category: count for category, count in query.group_by(IntegrationAuditLog.event_category).all()}

    def last_timestamp(
        self,
        event_types: tuple[str, ...],
        tenant_id: str | None = None,
    ) -> datetime | None:
        query = self.session.query(func.max(IntegrationAuditLog.timestamp)).filter(
            IntegrationAuditLog.event_type.in_(event_types)
        )
        if tenant_id:
            query = query.filter(IntegrationAuditLog.tenant_id == tenant_id)
        return query.scalar()
