"""Tenant-scoped repositories over the telemetry store."""
from device_telemetry.db.repositories.audit_repo import AuditRepository
from device_telemetry.db.repositories.base import BaseRepository
from device_telemetry.db.repositories.device_repo import DeviceRepository
from device_telemetry.db.repositories.integration_repo import IntegrationRepository
from device_telemetry.db.repositories.metric_repo import MetricRepository

__all__ = [
    "AuditRepository",
    "BaseRepository",
    "DeviceRepository",
    "IntegrationRepository",
    "MetricRepository",
]
