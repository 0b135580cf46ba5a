"""Integration audit trail.

Writes are fire-and-forget: each entry is committed in its own session
and a failed write is logged, never raised, so auditing cannot abort the
collection that triggered it. Request/response snapshots are redacted
before they are stored.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from device_telemetry.db.models import EventCategory, IntegrationAuditLog
from device_telemetry.db.repositories.audit_repo import AuditRepository
from device_telemetry.db.session import DatabaseSession

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"

_SECRET_KEY = re.compile(
    r"password|secret|token|api[_-]?key|authorization|credential|signature|hmac|session[_-]?id",
    re.IGNORECASE,
)


class EventType(str, Enum):
    INTEGRATION_CREATED = "integration_created"
    INTEGRATION_UPDATED = "integration_updated"
    INTEGRATION_DELETED = "integration_deleted"
    STATUS_CHANGED = "status_changed"
    DEVICE_REGISTERED = "device_registered"
    DEVICE_DEACTIVATED = "device_deactivated"
    DATA_COLLECTION = "data_collection"
    MANUAL_COLLECTION = "manual_collection"
    CONNECTION_TEST = "connection_test"
    DEVICE_DISCOVERY = "device_discovery"
    INTEGRATION_ERROR = "integration_error"
    AUTHENTICATION = "authentication"
    RATE_LIMITED = "rate_limited"
    DEVICE_CONFIG_UPDATED = "device_config_updated"


# Event types that represent a collection attempt
COLLECTION_EVENTS = (EventType.DATA_COLLECTION.value, EventType.MANUAL_COLLECTION.value)


def redact(value: Any) -> Any:
    """Copy of a snapshot with credential-looking keys masked, recursively."""
    if isinstance(value, dict):
        return {
            key: REDACTED if isinstance(key, str) and _SECRET_KEY.search(key) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def _value(item: Any) -> Any:
    return item.value if isinstance(item, Enum) else item


class AuditLog:
    """Append-only audit event store.

    Example:
        audit = AuditLog()
        audit.log_event(tenant_id, integration.id, EventType.CONNECTION_TEST,
                        EventCategory.SUCCESS, "Connection test passed")
    """

    def __init__(self, db: Optional[DatabaseSession] = None):
        self.db = db or DatabaseSession()

    def log_event(
        self,
        tenant_id: str,
        integration_id: Optional[str],
        event_type: EventType | str,
        category: EventCategory | str,
        message: str,
        device_id: Optional[str] = None,
        request_data: Optional[Dict[str, Any]] = None,
        response_data: Any = None,
        http_status: Optional[int] = None,
        response_time_ms: Optional[int] = None,
        error_code: Optional[str] = None,
        error_details: Optional[Dict[str, Any]] = None,
        data_points_collected: Optional[int] = None,
    ) -> Optional[int]:
        """Append an audit entry.

        Args:
            tenant_id: Owning tenant
            integration_id: Integration the event concerns, if any
            event_type: What happened
            category: success, error, warning or info
            message: Human-readable summary
            device_id: Device registration ID, if the event concerns a device
            request_data: Request snapshot (redacted before storage)
            response_data: Response snapshot (redacted before storage)
            http_status: Vendor HTTP status
            response_time_ms: Vendor response time
            error_code: Short machine-readable error code
            error_details: Extra error context (redacted before storage)
            data_points_collected: Number of metrics persisted

        Returns:
            The new entry's ID, or None if the write failed
        """
        try:
            entry = IntegrationAuditLog(
                tenant_id=tenant_id,
                integration_id=integration_id,
                device_registration_id=device_id,
                event_type=_value(event_type),
                event_category=_value(category),
                message=message,
                request_data=redact(request_data) if request_data is not None else None,
                response_data=redact(response_data) if response_data is not None else None,
                http_status_code=http_status,
                response_time_ms=response_time_ms,
                error_code=error_code,
                error_details=redact(error_details) if error_details is not None else None,
                data_points_collected=data_points_collected,
            )
            with self.db.session() as session:
                AuditRepository(session).create(entry)
                entry_id = entry.id
            return entry_id
        except Exception:
            logger.exception(
                "Failed to write audit entry %s for tenant=%s integration=%s",
                _value(event_type), tenant_id, integration_id,
            )
            return None

    def get_audit_logs(
        self,
        tenant_id: str,
        integration_id: Optional[str] = None,
        category: EventCategory | str | None = None,
        from_date: Optional[datetime] = None,
        limit: int = 100,
        event_type: EventType | str | None = None,
        device_id: Optional[str] = None,
    ) -> List[IntegrationAuditLog]:
        """Audit entries of one tenant, newest first."""
        with self.db.session() as session:
            return AuditRepository(session).query(
                tenant_id,
                integration_id=integration_id,
                event_category=_value(category),
                event_type=_value(event_type),
                device_registration_id=device_id,
                from_date=from_date,
                limit=limit,
            )
