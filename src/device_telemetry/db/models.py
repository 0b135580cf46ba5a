"""SQLAlchemy models for the device telemetry store.

This module defines the canonical data model for:
- Vendor integrations (one per tenant, vendor and credential identity)
- Device registrations discovered through an integration
- Normalized device metrics (append-only)
- The integration audit trail (append-only)

Every table carries tenant_id and all access must be filtered by it.
Timestamps are stored as naive UTC.
"""

from __future__ import annotations

import uuid
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from device_telemetry.utils import utc_now

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class Vendor(str, Enum):
    CANON = "canon"
    XEROX = "xerox"
    HP = "hp"
    FMAUDIT = "fmaudit"
    PRINTANISTA = "printanista"


class IntegrationMethod(str, Enum):
    API = "api"
    SNMP = "snmp"
    EMAIL = "email"
    MANUAL = "manual"
    CSV_IMPORT = "csv_import"
    THIRD_PARTY = "third_party"


class AuthType(str, Enum):
    OAUTH2 = "oauth2"
    API_KEY = "api_key"
    BASIC_AUTH = "basic_auth"
    CERTIFICATE = "certificate"


class CollectionFrequency(str, Enum):
    REAL_TIME = "real_time"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ON_DEMAND = "on_demand"


class IntegrationStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"
    PENDING_AUTH = "pending_auth"
    RATE_LIMITED = "rate_limited"
    MAINTENANCE = "maintenance"


class DeviceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"
    MAINTENANCE = "maintenance"
    UNKNOWN = "unknown"
    INACTIVE = "inactive"


class MetricCategory(str, Enum):
    USAGE = "usage"
    SUPPLY = "supply"
    MAINTENANCE = "maintenance"
    ERROR = "error"
    STATUS = "status"


class EventCategory(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Integration(Base):
    """A tenant's connection to one vendor platform.

    Integrations are never hard-deleted; deleting sets is_active=False and
    status 'inactive' and cascades the same to the integration's devices.
    """

    __tablename__ = "vendor_integrations"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(50), nullable=False)
    vendor = Column(String(20), nullable=False)
    platform_name = Column(String(100), nullable=False)
    integration_name = Column(String(255), nullable=False)
    integration_method = Column(String(20), nullable=False, default=IntegrationMethod.API.value)

    api_endpoint = Column(String(500))
    api_version = Column(String(20))
    auth_type = Column(String(20), nullable=False)
    auth_credentials = Column(JSON, nullable=False, default=dict)  # secret, never logged
    credential_fingerprint = Column(String(64), nullable=False)  # sha256 of canonical credentials

    collection_frequency = Column(String(20), nullable=False, default=CollectionFrequency.DAILY.value)
    status = Column(String(20), nullable=False, default=IntegrationStatus.PENDING_AUTH.value)
    is_active = Column(Boolean, nullable=False, default=True)
    last_collection_at = Column(DateTime)
    next_collection_at = Column(DateTime)

    rate_limit_requests = Column(Integer, nullable=False, default=1000)
    rate_limit_window = Column(Integer, nullable=False, default=3600)  # seconds
    current_requests = Column(Integer, nullable=False, default=0)
    rate_limit_reset_at = Column(DateTime)

    last_error = Column(Text)
    error_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)

    settings = Column(JSON, default=dict)
    field_mappings = Column(JSON, default=dict)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "vendor", "credential_fingerprint", name="uq_integration_credentials"),
        Index("idx_vi_tenant", "tenant_id", "is_active"),
        Index("idx_vi_due", "is_active", "status", "next_collection_at"),
    )

    def __repr__(self):
        # auth_credentials deliberately left out
        return (
            f"<Integration(id='{self.id}', tenant_id='{self.tenant_id}', vendor='{self.vendor}', "
            f"status='{self.status}')>"
        )


class DeviceRegistration(Base):
    """A vendor device known through one integration."""

    __tablename__ = "device_registrations"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(50), nullable=False)
    integration_id = Column(String(36), ForeignKey("vendor_integrations.id"), nullable=False)
    vendor_device_id = Column(String(100), nullable=False)  # ID on the vendor platform
    serial_number = Column(String(100))
    model_number = Column(String(100))
    device_name = Column(String(255))
    ip_address = Column(String(45))  # IPv6 max length
    mac_address = Column(String(17))
    location = Column(String(255))
    capabilities = Column(JSON, default=list)
    supported_metrics = Column(JSON, default=list)
    auth_override = Column(JSON)
    status = Column(String(20), nullable=False, default=DeviceStatus.UNKNOWN.value)
    is_active = Column(Boolean, nullable=False, default=True)
    last_data_collected_at = Column(DateTime)
    next_collection_at = Column(DateTime)
    registered_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "integration_id", "vendor_device_id", name="uq_device_vendor_id"),
        Index("idx_dr_tenant_integration", "tenant_id", "integration_id", "is_active"),
    )

    def __repr__(self):
        return (
            f"<DeviceRegistration(id='{self.id}', vendor_device_id='{self.vendor_device_id}', "
            f"status='{self.status}')>"
        )


class DeviceMetric(Base):
    """One normalized reading. Exactly one value column is set.

    Rows are append-only: nothing in the codebase updates or deletes them.
    """

    __tablename__ = "device_metrics"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    tenant_id = Column(String(50), nullable=False)
    device_registration_id = Column(String(36), ForeignKey("device_registrations.id"), nullable=False)
    integration_id = Column(String(36), ForeignKey("vendor_integrations.id"), nullable=False)
    metric_type = Column(String(100), nullable=False)
    metric_name = Column(String(255), nullable=False)
    metric_category = Column(String(20), nullable=False)
    numeric_value = Column(Float)
    string_value = Column(Text)
    boolean_value = Column(Boolean)
    json_value = Column(JSON)
    unit = Column(String(50))
    measurement_timestamp = Column(DateTime, nullable=False)
    collected_at = Column(DateTime, default=utc_now, nullable=False)
    is_valid = Column(Boolean, nullable=False, default=True)
    raw_data = Column(JSON)
    collection_method = Column(String(20), default=IntegrationMethod.API.value)
    data_source = Column(String(50))

    __table_args__ = (
        Index("idx_dm_device_time", "tenant_id", "device_registration_id", "measurement_timestamp"),
        Index("idx_dm_type", "tenant_id", "metric_type"),
        Index("idx_dm_collected", "tenant_id", "collected_at"),
    )

    @property
    def value(self):
        """Whichever value slot is populated."""
        for candidate in (self.numeric_value, self.string_value, self.boolean_value, self.json_value):
            if candidate is not None:
                return candidate
        return None

    def __repr__(self):
        return (
            f"<DeviceMetric(id={self.id}, metric_type='{self.metric_type}', "
            f"measurement_timestamp='{self.measurement_timestamp}')>"
        )


class IntegrationAuditLog(Base):
    """Audit trail for every collection attempt and state change.

    request_data/response_data are stored already redacted.
    """

    __tablename__ = "integration_audit_logs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    tenant_id = Column(String(50), nullable=False)
    integration_id = Column(String(36))
    device_registration_id = Column(String(36))
    event_type = Column(String(50), nullable=False)
    event_category = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    request_data = Column(JSON)
    response_data = Column(JSON)
    http_status_code = Column(Integer)
    response_time_ms = Column(Integer)
    error_code = Column(String(50))
    error_details = Column(JSON)
    data_points_collected = Column(Integer)
    timestamp = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_ial_tenant_time", "tenant_id", "timestamp"),
        Index("idx_ial_integration", "integration_id", "timestamp"),
        Index("idx_ial_event", "tenant_id", "event_type"),
    )

    def __repr__(self):
        return (
            f"<IntegrationAuditLog(id={self.id}, event_type='{self.event_type}', "
            f"event_category='{self.event_category}', timestamp='{self.timestamp}')>"
        )
