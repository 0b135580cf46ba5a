"""
Shared pytest fixtures for the telemetry collection test suite.

Every test gets fresh settings and, when it asks for ``db``, a fresh
in-memory SQLite store. Vendor APIs are never contacted: orchestrator
tests drive a ScriptedAdapter whose per-device results are set up front.
"""
import uuid
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from device_telemetry.adapters.base import AdapterConfig, CollectionResult, DeviceInfo, VendorAdapter
from device_telemetry.config.settings import reset_settings
from device_telemetry.context import clear_collection_context, get_collection_context
from device_telemetry.db.session import DatabaseSession, init_db
from device_telemetry.normalization.normalizer import reading
from device_telemetry.services.audit_log import AuditLog
from device_telemetry.services.collection_orchestrator import CollectionOrchestrator
from device_telemetry.services.integration_registry import IntegrationRegistry


# =============================================================================
# Environment Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Deterministic settings: no politeness delay, no metrics, no tracing."""
    monkeypatch.setenv("COLLECTION_INTER_DEVICE_DELAY_SECONDS", "0")
    monkeypatch.setenv("ENABLE_COLLECTION_METRICS", "false")
    monkeypatch.setenv("ENABLE_OTEL", "false")
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    monkeypatch.setenv("TELEMETRY_DB_URL", "sqlite://")
    reset_settings()
    clear_collection_context()
    yield
    clear_collection_context()
    reset_settings()


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def db():
    """Fresh in-memory telemetry store with all tables created."""
    DatabaseSession.reset()
    database = init_db("sqlite://")
    yield database
    DatabaseSession.reset()


@pytest.fixture
def audit(db) -> AuditLog:
    return AuditLog(db)


@pytest.fixture
def registry(db, audit) -> IntegrationRegistry:
    return IntegrationRegistry(db=db, audit=audit)


@pytest.fixture
def make_integration(registry):
    """Factory creating integrations with unique API key credentials.

    Defaults to an active Canon integration for tenant-a.
    """
    def _make(tenant_id: str = "tenant-a", vendor: str = "canon", status: str = "active", **kwargs):
        kwargs.setdefault("auth_type", "api_key")
        kwargs.setdefault("auth_credentials", {"api_key": f"key-{uuid.uuid4().hex[:8]}"})
        kwargs.setdefault("api_endpoint", "https://fleet.example.com")
        return registry.create_integration(tenant_id, vendor=vendor, status=status, **kwargs)

    return _make


@pytest.fixture
def register_devices(registry):
    """Register vendor device IDs under an integration, returning the registrations."""
    def _register(integration, *vendor_device_ids: str):
        return [
            registry.register_device(
                integration.tenant_id,
                integration.id,
                DeviceInfo(device_id=device_id, serial_number=f"SN-{device_id}"),
            )
            for device_id in vendor_device_ids
        ]

    return _register


# =============================================================================
# Collection Result Helpers
# =============================================================================

def ok_result(device_id: str, device_status: Optional[str] = None) -> CollectionResult:
    """A successful collection with two readings."""
    return CollectionResult(
        success=True,
        device_id=device_id,
        metrics=[reading("total_prints", 1200), reading("toner_black_level", 80)],
        raw_response={"counters": {"total_prints": 1200}, "supplies": {"black": 80}},
        response_time_ms=15,
        device_status=device_status,
    )


def failed_result(device_id: str, error: str = "Unauthorized", code: str = "auth_error") -> CollectionResult:
    return CollectionResult(success=False, device_id=device_id, error=error, error_code=code, http_status=401)


@pytest.fixture
def results():
    """Builders for scripted collection results."""
    return SimpleNamespace(ok=ok_result, failed=failed_result)


# =============================================================================
# Adapter Fixtures
# =============================================================================

class ScriptedAdapter(VendorAdapter):
    """Adapter answering from a script instead of a vendor API."""

    vendor = "canon"
    platform_name = "Scripted Platform"
    supported_auth_types = ("api_key",)
    required_credentials = {"api_key": ("api_key",)}

    def __init__(self, config: AdapterConfig, factory: "ScriptedAdapterFactory"):
        super().__init__(config, http=MagicMock())
        self.factory = factory
        self.calls: List[str] = []
        self.contexts: List[Any] = []
        self.closed = False

    @property
    def is_authenticated(self) -> bool:
        return True

    def _authenticate(self) -> None:
        pass

    def _clear_auth(self) -> None:
        pass

    def headers(self) -> Dict[str, str]:
        return {}

    def device_path(self, device_id: str) -> str:
        return f"/devices/{device_id}"

    def _fetch_metrics(self, device_id: str) -> Any:
        return {}

    def parse_metrics(self, payload):
        return []

    def parse_device(self, item):
        return None

    def test_connection(self) -> bool:
        return self.factory.connection_ok

    def discover_devices(self) -> List[DeviceInfo]:
        if self.factory.discover_error is not None:
            raise self.factory.discover_error
        return list(self.factory.devices)

    def update_device_config(self, device_id, config) -> bool:
        self.calls.append(device_id)
        return self.factory.config_ok

    def collect_device_metrics(self, device_id: str) -> CollectionResult:
        self.calls.append(device_id)
        self.contexts.append(get_collection_context())
        scripted = self.factory.results.get(device_id)
        if callable(scripted):
            return scripted(device_id)
        if scripted is None:
            return failed_result(device_id, error="No scripted result", code="api_error")
        return scripted

    def close(self) -> None:
        self.closed = True


class ScriptedAdapterFactory:
    """adapter_factory for CollectionOrchestrator; records every adapter it builds."""

    def __init__(self):
        self.results: Dict[str, Any] = {}
        self.devices: List[DeviceInfo] = []
        self.connection_ok = True
        self.config_ok = True
        self.discover_error: Optional[Exception] = None
        self.created: List[ScriptedAdapter] = []

    def __call__(self, config: AdapterConfig) -> ScriptedAdapter:
        adapter = ScriptedAdapter(config, self)
        self.created.append(adapter)
        return adapter

    @property
    def calls(self) -> List[str]:
        return [device_id for adapter in self.created for device_id in adapter.calls]


@pytest.fixture
def adapter_factory() -> ScriptedAdapterFactory:
    return ScriptedAdapterFactory()


@pytest.fixture
def orchestrator(registry, audit, adapter_factory):
    """Orchestrator over the test store; integrations run one at a time."""
    orch = CollectionOrchestrator(
        registry=registry,
        audit=audit,
        adapter_factory=adapter_factory,
        inter_device_delay=0,
        device_timeout=5,
        max_parallel=1,
    )
    yield orch
    orch.close()
