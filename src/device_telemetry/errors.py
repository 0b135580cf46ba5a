"""Exception types raised by the collection subsystem."""
from __future__ import annotations

from typing import Optional


class TelemetryError(Exception):
    """Base class for all collection errors."""


class ConfigurationError(TelemetryError):
    """Integration config is incomplete or names an unsupported option."""


class UnsupportedVendorError(ConfigurationError):
    def __init__(self, vendor: str):
        super().__init__(f"Unsupported vendor: {vendor}")
        self.vendor = vendor


class AuthenticationError(TelemetryError):
    """Vendor rejected our credentials, including after a re-authentication."""


class VendorAPIError(TelemetryError):
    """Vendor API returned a non-success status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_text: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text


class RateLimitError(VendorAPIError):
    """Vendor kept answering 429, or our own request budget is spent."""


class TransportError(TelemetryError):
    """Network level failure that survived every retry."""


class NotFoundError(TelemetryError):
    """Requested integration or device does not exist for this tenant."""


class DuplicateIntegrationError(TelemetryError):
    """An integration with the same tenant, vendor and credentials already exists."""
