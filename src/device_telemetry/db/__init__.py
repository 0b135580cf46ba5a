"""Database module for the telemetry store.

This module provides the models, session management and repository
classes used by the integration registry and the audit log.
"""
from device_telemetry.db.models import (
    AuthType,
    Base,
    CollectionFrequency,
    DeviceMetric,
    DeviceRegistration,
    DeviceStatus,
    EventCategory,
    Integration,
    IntegrationAuditLog,
    IntegrationMethod,
    IntegrationStatus,
    MetricCategory,
    Vendor,
)
from device_telemetry.db.session import DatabaseSession, init_db

__all__ = [
    # Models
    "Base",
    "DeviceMetric",
    "DeviceRegistration",
    "Integration",
    "IntegrationAuditLog",
    # Enums
    "AuthType",
    "CollectionFrequency",
    "DeviceStatus",
    "EventCategory",
    "IntegrationMethod",
    "IntegrationStatus",
    "MetricCategory",
    "Vendor",
    # Session
    "DatabaseSession",
    "init_db",
]
