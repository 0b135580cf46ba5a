"""Adapter registry keyed by vendor identifier.

Provides a factory for vendor adapters. The built-in vendors are
registered by register_default_adapters(), which the package __init__
calls on import; tests and extensions can register more.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Type

from device_telemetry.adapters.base import AdapterConfig, VendorAdapter
from device_telemetry.errors import UnsupportedVendorError
from device_telemetry.transport.http_client import HttpRetryClient


class AdapterRegistry:
    """Registry for vendor adapters.

    Example:
        # Register an adapter
        AdapterRegistry.register('canon', CanonAdapter)

        # Create an instance
        config = AdapterConfig(vendor='canon', api_endpoint='https://dca.local', ...)
        adapter = AdapterRegistry.create(config)
    """

    _adapters: Dict[str, Type[VendorAdapter]] = {}

    @classmethod
    def register(cls, vendor: str, adapter_class: Type[VendorAdapter]) -> None:
        """Register an adapter class for a vendor.

        Args:
            vendor: Vendor identifier (e.g., 'canon', 'xerox')
            adapter_class: The adapter class to register

        Raises:
            ValueError: If vendor is already registered
        """
        vendor = vendor.lower()
        if vendor in cls._adapters:
            raise ValueError(
                f"Adapter for vendor '{vendor}' is already registered. "
                f"Use unregister() first to replace it."
            )
        cls._adapters[vendor] = adapter_class

    @classmethod
    def unregister(cls, vendor: str) -> None:
        """Remove an adapter from the registry.

        Raises:
            KeyError: If vendor is not registered
        """
        vendor = vendor.lower()
        if vendor not in cls._adapters:
            raise KeyError(f"Adapter for vendor '{vendor}' is not registered")
        del cls._adapters[vendor]

    @classmethod
    def get(cls, vendor: str) -> Type[VendorAdapter]:
        """Get an adapter class by vendor.

        Raises:
            UnsupportedVendorError: If vendor is not registered
        """
        adapter_class = cls._adapters.get((vendor or "").lower())
        if adapter_class is None:
            raise UnsupportedVendorError(vendor)
        return adapter_class

    @classmethod
    def create(cls, config: AdapterConfig, http: Optional[HttpRetryClient] = None) -> VendorAdapter:
        """Create an adapter instance from configuration.

        Args:
            config: AdapterConfig with vendor and connection details
            http: Optional transport shared with the caller

        Returns:
            Configured adapter instance

        Raises:
            UnsupportedVendorError: If config.vendor is not registered
        """
        adapter_class = cls.get(config.vendor)
        return adapter_class(config, http=http)

    @classmethod
    def list_vendors(cls) -> List[str]:
        return list(cls._adapters.keys())

    @classmethod
    def is_registered(cls, vendor: str) -> bool:
        return (vendor or "").lower() in cls._adapters

    @classmethod
    def clear(cls) -> None:
        """Clear all registered adapters.

        Primarily useful for testing.
        """
        cls._adapters.clear()


def register_default_adapters() -> None:
    """Register the built-in vendors. Safe to call more than once."""
    from device_telemetry.adapters.canon import CanonAdapter
    from device_telemetry.adapters.fmaudit import FMAuditAdapter
    from device_telemetry.adapters.hp import HPAdapter
    from device_telemetry.adapters.xerox import XeroxAdapter

    defaults = {
        "canon": CanonAdapter,
        "xerox": XeroxAdapter,
        "hp": HPAdapter,
        "fmaudit": FMAuditAdapter,
        "printanista": FMAuditAdapter,
    }
    for vendor, adapter_class in defaults.items():
        if not AdapterRegistry.is_registered(vendor):
            AdapterRegistry.register(vendor, adapter_class)
