"""Outbound HTTP transport shared by vendor adapters."""
from device_telemetry.transport.http_client import HttpRetryClient

__all__ = ["HttpRetryClient"]
