"""Repository for device registrations.

Devices are keyed per tenant and integration by the vendor's own device
ID, so repeated discovery updates rows in place instead of duplicating
them.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from device_telemetry.db.models import DeviceRegistration, DeviceStatus
from device_telemetry.db.repositories.base import BaseRepository
from device_telemetry.utils import utc_now

_UPSERT_FIELDS = (
    "serial_number",
    "model_number",
    "device_name",
    "ip_address",
    "mac_address",
    "location",
    "capabilities",
    "supported_metrics",
    "auth_override",
)


class DeviceRepository(BaseRepository[DeviceRegistration]):
    """Repository for DeviceRegistration CRUD operations."""

    def __init__(self, session: Session):
        super().__init__(session, DeviceRegistration)

    def get_by_tenant(
        self,
        tenant_id: str,
        integration_id: str | None = None,
        active_only: bool = True,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[DeviceRegistration]:
        """Get devices for a tenant.

        Args:
            tenant_id: Tenant ID
            integration_id: Optional integration filter
            active_only: Skip deactivated devices
            limit: Maximum records to return
            offset: Records to skip

        Returns:
            Devices ordered by registration time
        """
        query = self._scoped(tenant_id)
        if integration_id:
            query = query.filter(DeviceRegistration.integration_id == integration_id)
        if active_only:
            query = query.filter(DeviceRegistration.is_active.is_(True))
        query = query.order_by(DeviceRegistration.registered_at.asc()).offset(offset)
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_by_vendor_device_id(
        self,
        tenant_id: str,
        integration_id: str,
        vendor_device_id: str,
    ) -> DeviceRegistration | None:
        return (
            self._scoped(tenant_id)
            .filter(
                DeviceRegistration.integration_id == integration_id,
                DeviceRegistration.vendor_device_id == vendor_device_id,
            )
            .first()
        )

    def upsert_device(
        self,
        tenant_id: str,
        integration_id: str,
        vendor_device_id: str,
        **fields: Any,
    ) -> tuple[DeviceRegistration, bool]:
        """Insert or refresh a device.

        A previously deactivated device is reactivated.

        Returns:
            Tuple of (device, created)
        """
        device = self.get_by_vendor_device_id(tenant_id, integration_id, vendor_device_id)
        created = device is None
        if created:
            device = DeviceRegistration(
                tenant_id=tenant_id,
                integration_id=integration_id,
                vendor_device_id=vendor_device_id,
                status=DeviceStatus.UNKNOWN.value,
            )
            self.session.add(device)
        elif not device.is_active:
            device.is_active = True
            device.status = DeviceStatus.UNKNOWN.value

        for key in _UPSERT_FIELDS:
            value = fields.get(key)
            if value is not None:
                setattr(device, key, value)

        self.session.flush()
        return device, created

    def deactivate_for_integration(self, tenant_id: str, integration_id: str) -> int:
        """Deactivate every device of an integration.

        Returns:
            Number of devices changed
        """
        return (
            self._scoped(tenant_id)
            .filter(
                DeviceRegistration.integration_id == integration_id,
                DeviceRegistration.is_active.is_(True),
            )
            .update(
                {
                    DeviceRegistration.is_active: False,
                    DeviceRegistration.status: DeviceStatus.INACTIVE.value,
                    DeviceRegistration.updated_at: utc_now(),
                },
                synchronize_session=False,
            )
        )

    def count_active(self, tenant_id: str | None = None, status: str | None = None) -> int:
        """Active device count, across tenants when tenant_id is None."""
        query = self.session.query(DeviceRegistration).filter(DeviceRegistration.is_active.is_(True))
        if tenant_id:
            query = query.filter(DeviceRegistration.tenant_id == tenant_id)
        if status:
            query = query.filter(DeviceRegistration.status == status)
        return query.count()
