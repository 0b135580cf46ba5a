"""Integration and device catalogue.

CRUD and lifecycle operations over integrations and their registered
devices, metric persistence, scheduling and rate-limit bookkeeping.
Every operation takes the tenant ID and every query is scoped by it.
State changes write an audit entry through AuditLog.
"""
from __future__ import annotations

import calendar
import hashlib
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from device_telemetry.adapters.base import DeviceInfo
from device_telemetry.adapters.registry import AdapterRegistry
from device_telemetry.config.settings import get_settings
from device_telemetry.db.models import (
    AuthType,
    CollectionFrequency,
    DeviceMetric,
    DeviceRegistration,
    DeviceStatus,
    EventCategory,
    Integration,
    IntegrationMethod,
    IntegrationStatus,
    Vendor,
)
from device_telemetry.db.repositories import (
    AuditRepository,
    DeviceRepository,
    IntegrationRepository,
    MetricRepository,
)
from device_telemetry.db.session import DatabaseSession
from device_telemetry.errors import (
    ConfigurationError,
    DuplicateIntegrationError,
    NotFoundError,
    UnsupportedVendorError,
)
from device_telemetry.normalization.normalizer import MeterReading
from device_telemetry.services.audit_log import COLLECTION_EVENTS, AuditLog, EventType
from device_telemetry.utils import to_naive_utc, utc_now

logger = logging.getLogger(__name__)

FREQUENCY_INTERVALS: Dict[str, timedelta] = {
    CollectionFrequency.REAL_TIME.value: timedelta(minutes=1),
    CollectionFrequency.HOURLY.value: timedelta(hours=1),
    CollectionFrequency.DAILY.value: timedelta(hours=24),
    CollectionFrequency.WEEKLY.value: timedelta(days=7),
}

# Integration fields update_integration() may change
UPDATABLE_FIELDS = (
    "integration_name",
    "platform_name",
    "api_endpoint",
    "api_version",
    "auth_credentials",
    "collection_frequency",
    "rate_limit_requests",
    "rate_limit_window",
    "settings",
    "field_mappings",
)


def add_months(value: datetime, months: int = 1) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def calculate_next_collection_time(frequency: Optional[str], from_time: Optional[datetime] = None) -> datetime:
    """Next collection time for a frequency.

    real_time +1 minute, hourly +1 hour, daily +24 hours, weekly +7 days,
    monthly +1 calendar month. on_demand and unknown values use daily.

    Args:
        frequency: CollectionFrequency value
        from_time: Anchor time, defaults to now (naive UTC)

    Returns:
        A time strictly later than from_time
    """
    anchor = from_time if from_time is not None else utc_now()
    frequency = frequency.value if isinstance(frequency, CollectionFrequency) else frequency
    if frequency == CollectionFrequency.MONTHLY.value:
        return add_months(anchor, 1)
    interval = FREQUENCY_INTERVALS.get(frequency, FREQUENCY_INTERVALS[CollectionFrequency.DAILY.value])
    return anchor + interval


def credential_fingerprint(credentials: Dict[str, Any]) -> str:
    """Stable sha256 of the canonical credential JSON."""
    canonical = json.dumps(credentials or {}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _check_choice(name: str, value: str, choices: Iterable[Any]) -> str:
    allowed = [c.value for c in choices]
    if value not in allowed:
        raise ConfigurationError(f"Invalid {name} '{value}'. Expected one of: {', '.join(allowed)}")
    return value


class IntegrationRegistry:
    """Tenant-scoped catalogue of integrations and devices.

    Example:
        registry = IntegrationRegistry()
        integration = registry.create_integration(
            "tenant-1", vendor="xerox", auth_type="oauth2",
            auth_credentials={"client_id": "...", "client_secret": "..."},
            api_endpoint="https://connectkey.example.com",
        )
        due = registry.get_integrations_due_for_collection()
    """

    calculate_next_collection_time = staticmethod(calculate_next_collection_time)

    def __init__(self, db: Optional[DatabaseSession] = None, audit: Optional[AuditLog] = None):
        self.db = db or DatabaseSession()
        self.audit = audit or AuditLog(self.db)

    # ------------------------------------------------------------------
    # Integrations
    # ------------------------------------------------------------------

    def create_integration(
        self,
        tenant_id: str,
        vendor: str,
        auth_type: str,
        auth_credentials: Dict[str, Any],
        api_endpoint: Optional[str] = None,
        integration_name: Optional[str] = None,
        platform_name: Optional[str] = None,
        api_version: Optional[str] = None,
        integration_method: str = IntegrationMethod.API.value,
        collection_frequency: str = CollectionFrequency.DAILY.value,
        status: str = IntegrationStatus.PENDING_AUTH.value,
        rate_limit_requests: Optional[int] = None,
        rate_limit_window: Optional[int] = None,
        settings: Optional[Dict[str, Any]] = None,
        field_mappings: Optional[Dict[str, str]] = None,
    ) -> Integration:
        """Create an integration.

        Raises:
            UnsupportedVendorError: Unknown vendor
            ConfigurationError: Invalid enum value, missing endpoint or credentials
            DuplicateIntegrationError: Same tenant, vendor and credentials exist
        """
        vendor = (_enum_value(vendor) or "").lower()
        if vendor not in [v.value for v in Vendor] or not AdapterRegistry.is_registered(vendor):
            raise UnsupportedVendorError(vendor)
        auth_type = _check_choice("auth_type", _enum_value(auth_type), AuthType)
        integration_method = _check_choice("integration_method", _enum_value(integration_method), IntegrationMethod)
        collection_frequency = _check_choice(
            "collection_frequency", _enum_value(collection_frequency), CollectionFrequency
        )
        status = _check_choice("status", _enum_value(status), IntegrationStatus)
        if not auth_credentials:
            raise ConfigurationError("Authentication credentials are required")
        if integration_method == IntegrationMethod.API.value and not api_endpoint:
            raise ConfigurationError("API endpoint is required for API integrations")

        defaults = get_settings().collection
        adapter_class = AdapterRegistry.get(vendor)
        fingerprint = credential_fingerprint(auth_credentials)

        integration = Integration(
            tenant_id=tenant_id,
            vendor=vendor,
            platform_name=platform_name or adapter_class.platform_name,
            integration_name=integration_name or f"{adapter_class.platform_name} integration",
            integration_method=integration_method,
            api_endpoint=api_endpoint,
            api_version=api_version,
            auth_type=auth_type,
            auth_credentials=dict(auth_credentials),
            credential_fingerprint=fingerprint,
            collection_frequency=collection_frequency,
            status=status,
            is_active=True,
            rate_limit_requests=rate_limit_requests or defaults.default_rate_limit_requests,
            rate_limit_window=rate_limit_window or defaults.default_rate_limit_window_seconds,
            current_requests=0,
            settings=dict(settings or {}),
            field_mappings=dict(field_mappings or {}),
        )

        try:
            with self.db.session() as session:
                repo = IntegrationRepository(session)
                if repo.get_by_fingerprint(tenant_id, vendor, fingerprint) is not None:
                    raise DuplicateIntegrationError(
                        f"An integration for vendor '{vendor}' with these credentials already exists"
                    )
                repo.create(integration)
        except IntegrityError as e:
            raise DuplicateIntegrationError(
                f"An integration for vendor '{vendor}' with these credentials already exists"
            ) from e

        logger.info("Created %s integration %s for tenant %s", vendor, integration.id, tenant_id)
        self.audit.log_event(
            tenant_id,
            integration.id,
            EventType.INTEGRATION_CREATED,
            EventCategory.INFO,
            f"Integration '{integration.integration_name}' created for {integration.platform_name}",
            request_data={
                "vendor": vendor,
                "auth_type": auth_type,
                "api_endpoint": api_endpoint,
                "collection_frequency": collection_frequency,
            },
        )
        return integration

    def get_integrations(self, tenant_id: str) -> List[Integration]:
        """Active integrations of a tenant, newest first."""
        with self.db.session() as session:
            return IntegrationRepository(session).get_active(tenant_id)

    def get_integration_by_id(self, tenant_id: str, integration_id: str) -> Optional[Integration]:
        with self.db.session() as session:
            return IntegrationRepository(session).get_by_id(integration_id, tenant_id)

    def require_integration(self, tenant_id: str, integration_id: str) -> Integration:
        integration = self.get_integration_by_id(tenant_id, integration_id)
        if integration is None:
            raise NotFoundError(f"Integration {integration_id} not found")
        return integration

    def update_integration(self, tenant_id: str, integration_id: str, **changes: Any) -> Integration:
        """Change integration settings.

        Credentials changes recompute the fingerprint. Only the names of
        changed fields are audited, never their values.

        Raises:
            NotFoundError: Integration not found for this tenant
            ConfigurationError: Unknown field or invalid value
            DuplicateIntegrationError: New credentials collide with another integration
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ConfigurationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if "collection_frequency" in changes:
            changes["collection_frequency"] = _check_choice(
                "collection_frequency", _enum_value(changes["collection_frequency"]), CollectionFrequency
            )
        if "auth_credentials" in changes and not changes["auth_credentials"]:
            raise ConfigurationError("Authentication credentials are required")

        with self.db.session() as session:
            repo = IntegrationRepository(session)
            integration = repo.get_by_id(integration_id, tenant_id)
            if integration is None:
                raise NotFoundError(f"Integration {integration_id} not found")
            if "auth_credentials" in changes:
                fingerprint = credential_fingerprint(changes["auth_credentials"])
                existing = repo.get_by_fingerprint(tenant_id, integration.vendor, fingerprint)
                if existing is not None and existing.id != integration.id:
                    raise DuplicateIntegrationError(
                        f"An integration for vendor '{integration.vendor}' with these credentials already exists"
                    )
                integration.credential_fingerprint = fingerprint
                changes["auth_credentials"] = dict(changes["auth_credentials"])
            for key, value in changes.items():
                setattr(integration, key, value)
            session.flush()

        self.audit.log_event(
            tenant_id,
            integration_id,
            EventType.INTEGRATION_UPDATED,
            EventCategory.INFO,
            f"Integration updated: {', '.join(sorted(changes))}",
            request_data={"fields": sorted(changes)},
        )
        return integration

    def update_integration_status(
        self,
        tenant_id: str,
        integration_id: str,
        status: str,
        error: Optional[str] = None,
    ) -> Integration:
        """Set status and last_error and bump the matching outcome counter.

        Raises:
            NotFoundError: Integration not found for this tenant
        """
        status = _check_choice("status", _enum_value(status), IntegrationStatus)
        with self.db.session() as session:
            repo = IntegrationRepository(session)
            integration = repo.get_by_id(integration_id, tenant_id)
            if integration is None:
                raise NotFoundError(f"Integration {integration_id} not found")
            previous = integration.status
            integration.status = status
            integration.last_error = error
            session.flush()
            repo.record_outcome(tenant_id, integration_id, succeeded=error is None)
            session.refresh(integration)

        if error:
            category = EventCategory.ERROR if status == IntegrationStatus.ERROR.value else EventCategory.WARNING
        else:
            category = EventCategory.INFO
        self.audit.log_event(
            tenant_id,
            integration_id,
            EventType.STATUS_CHANGED,
            category,
            f"Status changed from {previous} to {status}" + (f": {error}" if error else ""),
            request_data={"previous_status": previous, "status": status},
        )
        return integration

    def delete_integration(self, tenant_id: str, integration_id: str) -> bool:
        """Soft-delete an integration and deactivate its devices.

        Returns:
            False if the integration does not exist for this tenant
        """
        with self.db.session() as session:
            integration = IntegrationRepository(session).get_by_id(integration_id, tenant_id)
            if integration is None:
                return False
            integration.is_active = False
            integration.status = IntegrationStatus.INACTIVE.value
            devices = DeviceRepository(session).deactivate_for_integration(tenant_id, integration_id)

        logger.info("Deactivated integration %s and %s devices", integration_id, devices)
        self.audit.log_event(
            tenant_id,
            integration_id,
            EventType.INTEGRATION_DELETED,
            EventCategory.INFO,
            f"Integration deactivated; {devices} devices deactivated",
            response_data={"devices_deactivated": devices},
        )
        return True

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def register_device(
        self,
        tenant_id: str,
        integration_id: str,
        device: DeviceInfo,
        location: Optional[str] = None,
        auth_override: Optional[Dict[str, Any]] = None,
    ) -> DeviceRegistration:
        """Register a device under an integration, or refresh it if known.

        Raises:
            NotFoundError: Integration not found for this tenant
        """
        with self.db.session() as session:
            integration = IntegrationRepository(session).get_by_id(integration_id, tenant_id)
            if integration is None:
                raise NotFoundError(f"Integration {integration_id} not found")
            registration, created = DeviceRepository(session).upsert_device(
                tenant_id,
                integration_id,
                device.device_id,
                serial_number=device.serial_number,
                model_number=device.model_number,
                device_name=device.device_name,
                ip_address=device.ip_address,
                mac_address=device.mac_address,
                location=location or device.location,
                capabilities=list(device.capabilities),
                supported_metrics=list(device.supported_metrics),
                auth_override=auth_override,
            )

        self.audit.log_event(
            tenant_id,
            integration_id,
            EventType.DEVICE_REGISTERED,
            EventCategory.SUCCESS if created else EventCategory.INFO,
            f"Device {device.device_id} {'registered' if created else 'refreshed'}",
            device_id=registration.id,
            request_data=device.to_dict(),
        )
        return registration

    def get_devices(self, tenant_id: str, integration_id: Optional[str] = None) -> List[DeviceRegistration]:
        """Active devices of a tenant, optionally for one integration."""
        with self.db.session() as session:
            return DeviceRepository(session).get_by_tenant(tenant_id, integration_id=integration_id)

    def get_device_by_id(self, tenant_id: str, device_id: str) -> Optional[DeviceRegistration]:
        with self.db.session() as session:
            return DeviceRepository(session).get_by_id(device_id, tenant_id)

    def deactivate_device(self, tenant_id: str, device_id: str) -> bool:
        with self.db.session() as session:
            device = DeviceRepository(session).get_by_id(device_id, tenant_id)
            if device is None:
                return False
            device.is_active = False
            device.status = DeviceStatus.INACTIVE.value
            integration_id = device.integration_id

        self.audit.log_event(
            tenant_id,
            integration_id,
            EventType.DEVICE_DEACTIVATED,
            EventCategory.INFO,
            f"Device {device.vendor_device_id} deactivated",
            device_id=device_id,
        )
        return True

    def update_device_status(self, tenant_id: str, device_id: str, status: str) -> bool:
        """Set a device's registration status. Returns False if it does not exist."""
        status = _check_choice("status", _enum_value(status), DeviceStatus)
        with self.db.session() as session:
            device = DeviceRepository(session).get_by_id(device_id, tenant_id)
            if device is None:
                return False
            previous = device.status
            device.status = status
            integration_id = device.integration_id

        if previous != status:
            self.audit.log_event(
                tenant_id,
                integration_id,
                EventType.STATUS_CHANGED,
                EventCategory.INFO,
                f"Device {device.vendor_device_id} status changed from {previous} to {status}",
                device_id=device_id,
                request_data={"previous_status": previous, "status": status},
            )
        return True

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def collect_device_metrics(
        self,
        tenant_id: str,
        device_id: str,
        metrics: List[MeterReading],
        device_status: Optional[str] = None,
        collection_method: str = IntegrationMethod.API.value,
        data_source: Optional[str] = None,
    ) -> int:
        """Persist metric rows and stamp the device's last_data_collected_at.

        The caller records the audit entry for the collection. A change of
        device status is audited here.

        Returns:
            Number of rows written

        Raises:
            NotFoundError: Device not found for this tenant
        """
        collected_at = utc_now()
        with self.db.session() as session:
            device = DeviceRepository(session).get_by_id(device_id, tenant_id)
            if device is None:
                raise NotFoundError(f"Device {device_id} not found")
            rows = [
                DeviceMetric(
                    tenant_id=tenant_id,
                    device_registration_id=device.id,
                    integration_id=device.integration_id,
                    metric_type=metric.metric_type,
                    metric_name=metric.metric_name,
                    metric_category=metric.metric_category,
                    numeric_value=metric.numeric_value,
                    string_value=metric.string_value,
                    boolean_value=metric.boolean_value,
                    json_value=metric.json_value,
                    unit=metric.unit,
                    measurement_timestamp=to_naive_utc(metric.measurement_timestamp),
                    collected_at=collected_at,
                    is_valid=True,
                    raw_data=metric.raw_data,
                    collection_method=collection_method,
                    data_source=data_source,
                )
                for metric in metrics
            ]
            MetricRepository(session).create_many(rows)
            device.last_data_collected_at = collected_at
            previous = device.status
            if device_status:
                device.status = device_status
            integration_id = device.integration_id
            vendor_device_id = device.vendor_device_id

        if device_status and previous != device_status:
            self.audit.log_event(
                tenant_id,
                integration_id,
                EventType.STATUS_CHANGED,
                EventCategory.INFO,
                f"Device {vendor_device_id} status changed from {previous} to {device_status}",
                device_id=device_id,
                request_data={"previous_status": previous, "status": device_status},
            )
        return len(rows)

    def get_device_metrics(
        self,
        tenant_id: str,
        device_id: str,
        metric_types: Optional[List[str]] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[DeviceMetric]:
        """Metrics of one device, newest first."""
        with self.db.session() as session:
            return MetricRepository(session).get_for_device(
                tenant_id,
                device_id,
                metric_types=metric_types,
                from_date=from_date,
                to_date=to_date,
                limit=limit,
            )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def get_integrations_due_for_collection(
        self,
        now: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
    ) -> List[Integration]:
        with self.db.session() as session:
            return IntegrationRepository(session).get_due(now or utc_now(), tenant_id=tenant_id)

    def update_next_collection_time(
        self,
        tenant_id: str,
        integration_id: str,
        next_at: datetime,
        collected_at: Optional[datetime] = None,
    ) -> bool:
        """Persist the next collection time and stamp last_collection_at.

        next_collection_at never moves backwards.
        """
        with self.db.session() as session:
            return IntegrationRepository(session).advance_next_collection(
                tenant_id, integration_id, next_at, collected_at or utc_now()
            )

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def _rate_window(self, repo: IntegrationRepository, tenant_id: str, integration_id: str) -> int:
        row = (
            repo.session.query(Integration.rate_limit_window)
            .filter(Integration.tenant_id == tenant_id, Integration.id == integration_id)
            .first()
        )
        if row is None:
            raise NotFoundError(f"Integration {integration_id} not found")
        return row[0]

    def check_rate_limit(self, tenant_id: str, integration_id: str, now: Optional[datetime] = None) -> bool:
        """Whether the integration has used up its request budget.

        Starts a new window (counter back to 0) when the current one has
        elapsed.

        Returns:
            True when blocked
        """
        now = now or utc_now()
        with self.db.session() as session:
            repo = IntegrationRepository(session)
            window = self._rate_window(repo, tenant_id, integration_id)
            repo.reset_rate_window_if_elapsed(tenant_id, integration_id, now, window)
            current, limit = (
                session.query(Integration.current_requests, Integration.rate_limit_requests)
                .filter(Integration.tenant_id == tenant_id, Integration.id == integration_id)
                .one()
            )
        return current >= limit

    def increment_rate_limit(self, tenant_id: str, integration_id: str) -> None:
        """Count one request against the integration's budget."""
        with self.db.session() as session:
            IntegrationRepository(session).increment_requests(tenant_id, integration_id)

    def try_acquire_rate_limit(self, tenant_id: str, integration_id: str, now: Optional[datetime] = None) -> bool:
        """Check and count one request in one step.

        Returns:
            True if a request slot was granted
        """
        now = now or utc_now()
        with self.db.session() as session:
            repo = IntegrationRepository(session)
            window = self._rate_window(repo, tenant_id, integration_id)
            repo.reset_rate_window_if_elapsed(tenant_id, integration_id, now, window)
            return repo.increment_requests(tenant_id, integration_id, only_below_limit=True)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_collection_statistics(self, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        """Counts of integrations, devices, metrics and collection outcomes.

        Aggregates every tenant when tenant_id is None (operator view).
        """
        since = utc_now() - timedelta(hours=24)
        with self.db.session() as session:
            by_status = IntegrationRepository(session).count_by_status(tenant_id)
            device_repo = DeviceRepository(session)
            audit_repo = AuditRepository(session)
            outcomes = audit_repo.count_by_category(COLLECTION_EVENTS, tenant_id=tenant_id)
            last_run = audit_repo.last_timestamp(COLLECTION_EVENTS, tenant_id=tenant_id)
            stats = {
                "total_integrations": sum(by_status.values()),
                "active_integrations": by_status.get(IntegrationStatus.ACTIVE.value, 0),
                "error_integrations": by_status.get(IntegrationStatus.ERROR.value, 0),
                "integrations_by_status": by_status,
                "total_devices": device_repo.count_active(tenant_id),
                "online_devices": device_repo.count_active(tenant_id, status="online"),
                "metrics_last_24h": MetricRepository(session).count_since(since, tenant_id=tenant_id),
                "successful_collections": outcomes.get(EventCategory.SUCCESS.value, 0),
                "failed_collections": outcomes.get(EventCategory.ERROR.value, 0),
                "last_collection_time": last_run.isoformat() if last_run else None,
            }
        return stats
