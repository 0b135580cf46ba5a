"""Repository for normalized device metrics (append-only)."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from device_telemetry.db.models import DeviceMetric
from device_telemetry.db.repositories.base import BaseRepository


class MetricRepository(BaseRepository[DeviceMetric]):
    """Insert and query DeviceMetric rows. There is no update or delete."""

    def __init__(self, session: Session):
        super().__init__(session, DeviceMetric)

    def get_for_device(
        self,
        tenant_id: str,
        device_registration_id: str,
        metric_types: list[str] | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int | None = None,
    ) -> list[DeviceMetric]:
        """Metrics of one device, newest measurement first.

        Args:
            tenant_id: Tenant ID
            device_registration_id: Device registration ID
            metric_types: Only these metric types
            from_date: Inclusive lower bound on measurement_timestamp
            to_date: Inclusive upper bound on measurement_timestamp
            limit: Maximum rows

        Returns:
            Matching metric rows
        """
        query = self._scoped(tenant_id).filter(
            DeviceMetric.device_registration_id == device_registration_id
        )
        if metric_types:
            query = query.filter(DeviceMetric.metric_type.in_(metric_types))
        if from_date:
            query = query.filter(DeviceMetric.measurement_timestamp >= from_date)
        if to_date:
            query = query.filter(DeviceMetric.measurement_timestamp <= to_date)
        query = query.order_by(DeviceMetric.measurement_timestamp.desc(), DeviceMetric.id.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def count_since(self, since: datetime, tenant_id: str | None = None) -> int:
        query = self.session.query(DeviceMetric).filter(DeviceMetric.collected_at >= since)
        if tenant_id:
            query = query.filter(DeviceMetric.tenant_id == tenant_id)
        return query.count()
