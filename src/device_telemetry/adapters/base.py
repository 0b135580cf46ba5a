"""Base adapter interface for vendor fleet-management APIs.

This module defines the contract every vendor adapter implements. Shared
behavior (HTTP resilience, field normalization) is composed in through
HttpRetryClient and MetricNormalizer; the only state held here is the
adapter's configuration. Tokens and sessions live on the concrete
adapters.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple

from device_telemetry.db.models import DeviceStatus
from device_telemetry.errors import (
    AuthenticationError,
    ConfigurationError,
    RateLimitError,
    TelemetryError,
    TransportError,
    VendorAPIError,
)
from device_telemetry.normalization.normalizer import MeterReading, MetricNormalizer
from device_telemetry.transport.http_client import HttpRetryClient

logger = logging.getLogger(__name__)

# Vendor state strings -> registration status
_STATUS_MAP: Dict[str, DeviceStatus] = {
    "ready": DeviceStatus.ONLINE,
    "idle": DeviceStatus.ONLINE,
    "online": DeviceStatus.ONLINE,
    "printing": DeviceStatus.ONLINE,
    "active": DeviceStatus.ONLINE,
    "offline": DeviceStatus.OFFLINE,
    "unreachable": DeviceStatus.OFFLINE,
    "error": DeviceStatus.ERROR,
    "fault": DeviceStatus.ERROR,
    "maintenance": DeviceStatus.MAINTENANCE,
}


def map_device_status(state: Any) -> str:
    """Map a vendor-reported state string to a DeviceStatus value."""
    if not isinstance(state, str):
        return DeviceStatus.UNKNOWN.value
    return _STATUS_MAP.get(state.strip().lower(), DeviceStatus.UNKNOWN).value


@dataclass
class AdapterConfig:
    """Connection settings for one integration."""

    vendor: str
    api_endpoint: Optional[str]
    auth_type: str
    auth_credentials: Dict[str, Any] = field(default_factory=dict)
    api_version: Optional[str] = None
    integration_id: Optional[str] = None
    tenant_id: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)
    field_mappings: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_integration(cls, integration: Any) -> AdapterConfig:
        """Build from an Integration row (or anything with the same attributes)."""
        return cls(
            vendor=integration.vendor,
            api_endpoint=integration.api_endpoint,
            auth_type=integration.auth_type,
            auth_credentials=dict(integration.auth_credentials or {}),
            api_version=integration.api_version,
            integration_id=integration.id,
            tenant_id=integration.tenant_id,
            settings=dict(integration.settings or {}),
            field_mappings=dict(integration.field_mappings or {}),
        )


@dataclass
class DeviceInfo:
    """A device as reported by the vendor platform."""

    device_id: str
    serial_number: Optional[str] = None
    model_number: Optional[str] = None
    device_name: Optional[str] = None
    ip_address: Optional[str] = None
    mac_address: Optional[str] = None
    location: Optional[str] = None
    capabilities: List[str] = field(default_factory=list)
    supported_metrics: List[str] = field(default_factory=list)
    status: str = DeviceStatus.UNKNOWN.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "serial_number": self.serial_number,
            "model_number": self.model_number,
            "device_name": self.device_name,
            "ip_address": self.ip_address,
            "mac_address": self.mac_address,
            "location": self.location,
            "capabilities": list(self.capabilities),
            "supported_metrics": list(self.supported_metrics),
            "status": self.status,
        }


@dataclass
class CollectionResult:
    """Outcome of collecting one device."""

    success: bool
    device_id: str
    metrics: List[MeterReading] = field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None
    http_status: Optional[int] = None
    raw_response: Any = None
    response_time_ms: int = 0
    device_status: Optional[str] = None


class InvalidPayloadError(TelemetryError):
    """Vendor response was missing or not the expected JSON object."""


def _error_code(exc: BaseException) -> Tuple[str, Optional[int]]:
    if isinstance(exc, RateLimitError):
        return "rate_limited", exc.status_code
    if isinstance(exc, VendorAPIError):
        return "api_error", exc.status_code
    if isinstance(exc, AuthenticationError):
        return "auth_error", 401
    if isinstance(exc, ConfigurationError):
        return "configuration_error", None
    if isinstance(exc, TransportError):
        return "transport_error", None
    if isinstance(exc, InvalidPayloadError):
        return "invalid_payload", None
    return "unexpected_error", None


class VendorAdapter(ABC):
    """Abstract base class for vendor adapters.

    Subclasses declare their endpoints as class attributes and implement
    the vendor-specific pieces: authentication, header building, device
    parsing and metric parsing.

    Example:
        class AcmeAdapter(VendorAdapter):
            vendor = "acme"
            platform_name = "Acme Fleet"
            supported_auth_types = ("api_key",)
            health_path = "/health"
            devices_path = "/devices"

            def _authenticate(self) -> None:
                self._token = self.credential("api_key")
    """

    vendor: ClassVar[str] = ""
    platform_name: ClassVar[str] = ""
    supported_auth_types: ClassVar[Tuple[str, ...]] = ()
    # auth_type -> credential keys that must be present
    required_credentials: ClassVar[Dict[str, Tuple[str, ...]]] = {}
    default_capabilities: ClassVar[Tuple[str, ...]] = ("meter_reading", "status_monitoring")
    supported_metrics: ClassVar[Tuple[str, ...]] = ()

    health_path: ClassVar[str] = ""
    devices_path: ClassVar[str] = ""
    config_suffix: ClassVar[str] = "config"

    def __init__(self, config: AdapterConfig, http: Optional[HttpRetryClient] = None):
        """Initialize the adapter.

        Args:
            config: Integration connection settings
            http: Transport to use; one is built from settings when omitted
        """
        self.config = config
        if http is None:
            http = HttpRetryClient(on_auth_error=self.handle_auth_error)
        elif http.on_auth_error is None:
            http.on_auth_error = self.handle_auth_error
        self.http = http
        self.normalizer = MetricNormalizer(config.field_mappings)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        return (self.config.api_endpoint or "").rstrip("/")

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def credential(self, key: str, default: Any = None) -> Any:
        return (self.config.auth_credentials or {}).get(key, default)

    def validate_config(self) -> None:
        """Fail fast on config that can never authenticate.

        Raises:
            ConfigurationError: Missing endpoint, unsupported auth type,
                                missing or non-string required credential
                                fields
        """
        if not self.config.api_endpoint:
            raise ConfigurationError(f"{self.platform_name}: API endpoint is required")
        if self.config.auth_type not in self.supported_auth_types:
            raise ConfigurationError(
                f"{self.platform_name}: unsupported auth type '{self.config.auth_type}'. "
                f"Supported: {', '.join(self.supported_auth_types)}"
            )
        if not self.config.auth_credentials:
            raise ConfigurationError(f"{self.platform_name}: authentication credentials are required")
        required = self.required_credentials.get(self.config.auth_type, ())
        missing = [key for key in required if not self.credential(key)]
        if missing:
            raise ConfigurationError(
                f"{self.platform_name}: missing credential fields for {self.config.auth_type}: "
                f"{', '.join(missing)}"
            )
        not_text = [key for key in required if not isinstance(self.credential(key), str)]
        if not_text:
            raise ConfigurationError(
                f"{self.platform_name}: credential fields must be strings: {', '.join(not_text)}"
            )

    # ------------------------------------------------------------------
    # Vendor-specific hooks
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def is_authenticated(self) -> bool:
        """Whether a usable token/session is cached."""

    @abstractmethod
    def _authenticate(self) -> None:
        """Obtain a token or session. Raises on failure."""

    @abstractmethod
    def _clear_auth(self) -> None:
        """Drop any cached token or session."""

    @abstractmethod
    def headers(self) -> Dict[str, str]:
        """Auth and vendor headers for the next request."""

    @abstractmethod
    def device_path(self, device_id: str) -> str:
        pass

    @abstractmethod
    def _fetch_metrics(self, device_id: str) -> Any:
        """Fetch the raw metrics payload for one device."""

    @abstractmethod
    def parse_metrics(self, payload: Mapping[str, Any]) -> List[MeterReading]:
        """Normalize a raw metrics payload."""

    @abstractmethod
    def parse_device(self, item: Mapping[str, Any]) -> Optional[DeviceInfo]:
        """Map one vendor device record, or None if it has no usable ID."""

    def device_items(self, payload: Any) -> List[Any]:
        """Pull the device list out of a discovery response."""
        if isinstance(payload, list):
            return payload
        if isinstance(payload, Mapping):
            items = payload.get("devices") or payload.get("printers") or []
            return items if isinstance(items, list) else []
        return []

    def status_from_payload(self, payload: Mapping[str, Any]) -> Optional[str]:
        """Registration status derived from a metrics payload, if it has one."""
        status = payload.get("status")
        if isinstance(status, Mapping):
            return map_device_status(status.get("state"))
        return None

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def test_connection(self) -> bool:
        """Lightweight reachability check. Never raises."""
        try:
            self.http.request("GET", self.url(self.health_path), headers=self.headers)
            return True
        except Exception as e:
            logger.warning("%s connection test failed: %s", self.platform_name, e)
            return False

    def authenticate(self) -> bool:
        """Establish a token or session if none is cached.

        Safe to call repeatedly: a cached, unexpired token is reused.

        Returns:
            True when authenticated, False when the vendor rejected us or
            could not be reached

        Raises:
            ConfigurationError: Config can never authenticate
        """
        self.validate_config()
        if self.is_authenticated:
            return True
        try:
            self._authenticate()
        except (TelemetryError, ValueError) as e:
            logger.warning("%s authentication failed: %s", self.platform_name, e)
            self._clear_auth()
            return False
        logger.info("%s authentication succeeded", self.platform_name)
        return self.is_authenticated

    def ensure_authenticated(self) -> None:
        if not self.authenticate():
            raise AuthenticationError(f"{self.platform_name}: authentication failed")

    def handle_auth_error(self) -> None:
        """Transport hook for 401 responses.

        Clears cached auth state and re-authenticates once.

        Raises:
            AuthenticationError: Re-authentication failed
        """
        logger.info("%s session rejected, re-authenticating", self.platform_name)
        self._clear_auth()
        if not self.authenticate():
            raise AuthenticationError(f"{self.platform_name}: re-authentication failed")

    def discover_devices(self) -> List[DeviceInfo]:
        """List the devices visible to this credential.

        Returns:
            Devices, empty when the vendor reports none

        Raises:
            AuthenticationError, VendorAPIError, TransportError on failure
        """
        self.ensure_authenticated()
        payload = self.http.request("GET", self.url(self.devices_path), headers=self.headers)
        devices = []
        for item in self.device_items(payload):
            if not isinstance(item, Mapping):
                continue
            device = self.parse_device(item)
            if device is not None:
                devices.append(device)
        logger.info("%s discovery found %s devices", self.platform_name, len(devices))
        return devices

    def collect_device_metrics(self, device_id: str) -> CollectionResult:
        """Fetch and normalize one device's current readings. Never raises."""
        started = time.monotonic()
        try:
            self.ensure_authenticated()
            payload = self._fetch_metrics(device_id)
            if not isinstance(payload, Mapping):
                raise InvalidPayloadError(
                    f"Unexpected response type {type(payload).__name__} for device {device_id}"
                )
            metrics = self.parse_metrics(payload)
            return CollectionResult(
                success=True,
                device_id=device_id,
                metrics=metrics,
                raw_response=payload,
                response_time_ms=int((time.monotonic() - started) * 1000),
                device_status=self.status_from_payload(payload),
            )
        except Exception as e:
            code, status = _error_code(e)
            if code == "unexpected_error":
                logger.exception("%s collection for device %s failed", self.platform_name, device_id)
            else:
                logger.warning("%s collection for device %s failed: %s", self.platform_name, device_id, e)
            return CollectionResult(
                success=False,
                device_id=device_id,
                error=str(e) or type(e).__name__,
                error_code=code,
                http_status=status,
                response_time_ms=int((time.monotonic() - started) * 1000),
            )

    def collect_multiple_device_metrics(self, device_ids: List[str]) -> List[CollectionResult]:
        return [self.collect_device_metrics(device_id) for device_id in device_ids]

    def get_device_info(self, device_id: str) -> Optional[DeviceInfo]:
        """Fetch one device record; None on any failure."""
        try:
            self.ensure_authenticated()
            payload = self.http.request("GET", self.url(self.device_path(device_id)), headers=self.headers)
            if not isinstance(payload, Mapping):
                return None
            item = payload.get("device") if isinstance(payload.get("device"), Mapping) else payload
            return self.parse_device(item)
        except Exception as e:
            logger.warning("%s device info for %s failed: %s", self.platform_name, device_id, e)
            return None

    def update_device_config(self, device_id: str, config: Mapping[str, Any]) -> bool:
        """Push a configuration change to one device. Returns False on failure."""
        try:
            self.ensure_authenticated()
            self.http.request(
                "PUT",
                self.url(f"{self.device_path(device_id)}/{self.config_suffix}"),
                headers=self.headers,
                json=dict(config),
            )
            return True
        except Exception as e:
            logger.warning("%s config update for %s failed: %s", self.platform_name, device_id, e)
            return False

    def close(self) -> None:
        self.http.close()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(integration_id={self.config.integration_id!r}, "
            f"endpoint={self.config.api_endpoint!r})"
        )
