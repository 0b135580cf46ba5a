"""Vendor adapters for printer/copier fleet platforms.

One adapter per vendor API:
- Canon Data Collection Agent
- Xerox ConnectKey
- HP PrintOS
- FMAudit / Printanista

Usage:
    from device_telemetry.adapters import AdapterConfig, AdapterRegistry

    adapter = AdapterRegistry.create(AdapterConfig.from_integration(integration))
    if adapter.test_connection():
        devices = adapter.discover_devices()
        result = adapter.collect_device_metrics(devices[0].device_id)
"""

from device_telemetry.adapters.base import (
    AdapterConfig,
    CollectionResult,
    DeviceInfo,
    InvalidPayloadError,
    VendorAdapter,
    map_device_status,
)
from device_telemetry.adapters.canon import CanonAdapter
from device_telemetry.adapters.fmaudit import FMAuditAdapter
from device_telemetry.adapters.hp import HPAdapter
from device_telemetry.adapters.registry import AdapterRegistry, register_default_adapters
from device_telemetry.adapters.xerox import XeroxAdapter

register_default_adapters()

__all__ = [
    "AdapterConfig",
    "AdapterRegistry",
    "CanonAdapter",
    "CollectionResult",
    "DeviceInfo",
    "FMAuditAdapter",
    "HPAdapter",
    "InvalidPayloadError",
    "VendorAdapter",
    "XeroxAdapter",
    "map_device_status",
    "register_default_adapters",
]
