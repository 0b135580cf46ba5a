"""Tests for the tenant-scoped integration and device catalogue."""
from datetime import datetime, timedelta

import pytest

from device_telemetry.adapters.base import DeviceInfo
from device_telemetry.db.models import IntegrationStatus
from device_telemetry.errors import (
    ConfigurationError,
    DuplicateIntegrationError,
    NotFoundError,
    UnsupportedVendorError,
)
from device_telemetry.normalization.normalizer import reading
from device_telemetry.services.audit_log import EventType
from device_telemetry.services.integration_registry import credential_fingerprint
from device_telemetry.utils import utc_now


class TestCreateIntegration:
    def test_defaults(self, registry, audit):
        integration = registry.create_integration(
            "tenant-a",
            vendor="canon",
            auth_type="api_key",
            auth_credentials={"api_key": "secret-key"},
            api_endpoint="https://dca.example.com",
        )

        assert integration.id
        assert integration.status == "pending_auth"
        assert integration.platform_name == "Canon Data Collection Agent"
        assert integration.collection_frequency == "daily"
        assert integration.rate_limit_requests == 1000
        assert integration.rate_limit_window == 3600
        assert integration.current_requests == 0
        assert integration.credential_fingerprint == credential_fingerprint({"api_key": "secret-key"})

        entries = audit.get_audit_logs("tenant-a", event_type=EventType.INTEGRATION_CREATED)
        assert len(entries) == 1
        assert "secret-key" not in str(entries[0].request_data)

    def test_vendor_is_case_insensitive(self, make_integration):
        assert make_integration(vendor="XEROX").vendor == "xerox"

    def test_unsupported_vendor(self, registry):
        with pytest.raises(UnsupportedVendorError):
            registry.create_integration(
                "tenant-a", vendor="brother", auth_type="api_key",
                auth_credentials={"api_key": "k"}, api_endpoint="https://x",
            )

    def test_credentials_required(self, registry):
        with pytest.raises(ConfigurationError, match="credentials"):
            registry.create_integration(
                "tenant-a", vendor="canon", auth_type="api_key", auth_credentials={}, api_endpoint="https://x",
            )

    def test_endpoint_required_for_api_method(self, registry):
        with pytest.raises(ConfigurationError, match="endpoint"):
            registry.create_integration("tenant-a", vendor="canon", auth_type="api_key", auth_credentials={"api_key": "k"})

    def test_endpoint_optional_for_manual_method(self, registry):
        integration = registry.create_integration(
            "tenant-a", vendor="fmaudit", auth_type="api_key",
            auth_credentials={"api_key": "k"}, integration_method="manual",
        )
        assert integration.api_endpoint is None

    def test_invalid_frequency(self, make_integration):
        with pytest.raises(ConfigurationError, match="collection_frequency"):
            make_integration(collection_frequency="fortnightly")

    def test_duplicate_credentials_rejected(self, make_integration):
        make_integration(auth_credentials={"api_key": "shared"})
        with pytest.raises(DuplicateIntegrationError):
            make_integration(auth_credentials={"api_key": "shared"})

    def test_same_credentials_allowed_across_tenants_and_vendors(self, make_integration):
        a = make_integration("tenant-a", auth_credentials={"api_key": "shared"})
        b = make_integration("tenant-b", auth_credentials={"api_key": "shared"})
        c = make_integration("tenant-a", vendor="xerox", auth_credentials={"api_key": "shared"})
        assert len({a.id, b.id, c.id}) == 3


class TestTenantIsolation:
    def test_lookups_are_tenant_scoped(self, registry, make_integration):
        integration = make_integration("tenant-a")

        assert registry.get_integration_by_id("tenant-a", integration.id) is not None
        assert registry.get_integration_by_id("tenant-b", integration.id) is None
        with pytest.raises(NotFoundError):
            registry.require_integration("tenant-b", integration.id)
        assert registry.get_integrations("tenant-b") == []

    def test_colliding_vendor_device_ids(self, registry, make_integration):
        a = make_integration("tenant-a", auth_credentials={"api_key": "k"})
        b = make_integration("tenant-b", auth_credentials={"api_key": "k"})

        device_a = registry.register_device("tenant-a", a.id, DeviceInfo(device_id="D1", serial_number="A"))
        device_b = registry.register_device("tenant-b", b.id, DeviceInfo(device_id="D1", serial_number="B"))

        assert device_a.id != device_b.id
        assert [d.serial_number for d in registry.get_devices("tenant-a")] == ["A"]
        assert [d.serial_number for d in registry.get_devices("tenant-b")] == ["B"]
        assert registry.get_device_by_id("tenant-b", device_a.id) is None
        with pytest.raises(NotFoundError):
            registry.collect_device_metrics("tenant-b", device_a.id, [reading("total_prints", 1)])

    def test_register_device_under_foreign_integration(self, registry, make_integration):
        integration = make_integration("tenant-a")
        with pytest.raises(NotFoundError):
            registry.register_device("tenant-b", integration.id, DeviceInfo(device_id="D1"))

    def test_tenant_is_mandatory(self, registry):
        with pytest.raises(ValueError):
            registry.get_integrations("")


class TestUpdateIntegration:
    def test_update_fields_and_fingerprint(self, registry, audit, make_integration):
        integration = make_integration()

        updated = registry.update_integration(
            "tenant-a", integration.id,
            collection_frequency="hourly",
            auth_credentials={"api_key": "rotated"},
        )

        assert updated.collection_frequency == "hourly"
        assert updated.credential_fingerprint == credential_fingerprint({"api_key": "rotated"})
        entry = audit.get_audit_logs("tenant-a", event_type=EventType.INTEGRATION_UPDATED)[0]
        assert entry.request_data == {"fields": ["auth_credentials", "collection_frequency"]}
        assert "rotated" not in entry.message

    def test_unknown_field(self, registry, make_integration):
        integration = make_integration()
        with pytest.raises(ConfigurationError):
            registry.update_integration("tenant-a", integration.id, tenant_id="tenant-b")

    def test_credentials_collision(self, registry, make_integration):
        make_integration(auth_credentials={"api_key": "taken"})
        other = make_integration()
        with pytest.raises(DuplicateIntegrationError):
            registry.update_integration("tenant-a", other.id, auth_credentials={"api_key": "taken"})

    def test_not_found(self, registry):
        with pytest.raises(NotFoundError):
            registry.update_integration("tenant-a", "missing", integration_name="x")


class TestUpdateIntegrationStatus:
    def test_error_then_recovery(self, registry, audit, make_integration):
        integration = make_integration()

        failed = registry.update_integration_status("tenant-a", integration.id, "error", error="Unauthorized")
        assert failed.status == "error"
        assert failed.last_error == "Unauthorized"
        assert failed.error_count == 1
        assert failed.success_count == 0

        recovered = registry.update_integration_status("tenant-a", integration.id, IntegrationStatus.ACTIVE)
        assert recovered.status == "active"
        assert recovered.last_error is None
        assert recovered.error_count == 1
        assert recovered.success_count == 1

        stored = registry.get_integration_by_id("tenant-a", integration.id)
        assert (stored.status, stored.error_count, stored.success_count) == ("active", 1, 1)

        categories = [e.event_category for e in audit.get_audit_logs("tenant-a", event_type="status_changed")]
        assert categories == ["info", "error"]

    def test_invalid_status(self, registry, make_integration):
        integration = make_integration()
        with pytest.raises(ConfigurationError):
            registry.update_integration_status("tenant-a", integration.id, "exploded")

    def test_not_found(self, registry):
        with pytest.raises(NotFoundError):
            registry.update_integration_status("tenant-a", "missing", "active")


class TestDeleteIntegration:
    def test_soft_delete_cascades_to_devices(self, registry, make_integration, register_devices):
        integration = make_integration()
        register_devices(integration, "D1", "D2")

        assert registry.delete_integration("tenant-a", integration.id) is True

        stored = registry.get_integration_by_id("tenant-a", integration.id)
        assert stored.is_active is False
        assert stored.status == "inactive"
        assert registry.get_integrations("tenant-a") == []
        assert registry.get_devices("tenant-a") == []
        assert registry.get_integrations_due_for_collection() == []

    def test_unknown_or_foreign(self, registry, make_integration):
        integration = make_integration("tenant-a")
        assert registry.delete_integration("tenant-b", integration.id) is False
        assert registry.delete_integration("tenant-a", "missing") is False


class TestDevices:
    def test_register_is_an_upsert(self, registry, audit, make_integration):
        integration = make_integration()

        first = registry.register_device("tenant-a", integration.id, DeviceInfo(device_id="D1", serial_number="S1"))
        second = registry.register_device(
            "tenant-a", integration.id, DeviceInfo(device_id="D1", model_number="iR-ADV"), location="Floor 2",
        )

        assert first.id == second.id
        assert second.serial_number == "S1"
        assert second.model_number == "iR-ADV"
        assert second.location == "Floor 2"
        assert len(registry.get_devices("tenant-a", integration.id)) == 1
        categories = [e.event_category for e in audit.get_audit_logs("tenant-a", event_type="device_registered")]
        assert categories == ["info", "success"]

    def test_deactivate_and_reactivate(self, registry, make_integration, register_devices):
        integration = make_integration()
        (device,) = register_devices(integration, "D1")

        assert registry.deactivate_device("tenant-a", device.id) is True
        assert registry.get_devices("tenant-a") == []
        assert registry.get_device_by_id("tenant-a", device.id).status == "inactive"

        registry.register_device("tenant-a", integration.id, DeviceInfo(device_id="D1"))
        assert [d.id for d in registry.get_devices("tenant-a")] == [device.id]

    def test_update_device_status(self, registry, make_integration, register_devices):
        integration = make_integration()
        (device,) = register_devices(integration, "D1")

        assert registry.update_device_status("tenant-a", device.id, "online") is True
        assert registry.get_device_by_id("tenant-a", device.id).status == "online"
        assert registry.update_device_status("tenant-b", device.id, "online") is False
        with pytest.raises(ConfigurationError):
            registry.update_device_status("tenant-a", device.id, "on_fire")


class TestMetrics:
    def test_value_slots_round_trip(self, registry, make_integration, register_devices):
        integration = make_integration()
        (device,) = register_devices(integration, "D1")
        measured = datetime(2024, 3, 1, 10, 0)
        metrics = [
            reading("total_prints", 1200, measured),
            reading("device_status", "ready", measured),
            reading("duplex_enabled", True, measured),
            reading("device_errors", [{"code": "E1"}], measured),
        ]

        written = registry.collect_device_metrics(
            "tenant-a", device.id, metrics, device_status="online", data_source="Canon Data Collection Agent",
        )

        assert written == 4
        stored = {m.metric_type: m for m in registry.get_device_metrics("tenant-a", device.id)}
        assert stored["total_prints"].numeric_value == 1200.0
        assert stored["device_status"].string_value == "ready"
        assert stored["duplex_enabled"].boolean_value is True
        assert stored["device_errors"].json_value == [{"code": "E1"}]
        assert stored["total_prints"].measurement_timestamp == measured
        assert stored["total_prints"].collection_method == "api"
        assert stored["total_prints"].integration_id == integration.id

        refreshed = registry.get_device_by_id("tenant-a", device.id)
        assert refreshed.status == "online"
        assert refreshed.last_data_collected_at is not None

    def test_status_change_from_collection_is_audited(self, registry, audit, make_integration, register_devices):
        integration = make_integration()
        (device,) = register_devices(integration, "D1")

        registry.collect_device_metrics("tenant-a", device.id, [reading("total_prints", 1)], device_status="online")
        registry.collect_device_metrics("tenant-a", device.id, [reading("total_prints", 2)], device_status="online")

        (entry,) = audit.get_audit_logs("tenant-a", event_type=EventType.STATUS_CHANGED, device_id=device.id)
        assert entry.integration_id == integration.id
        assert entry.request_data == {"previous_status": "unknown", "status": "online"}

    def test_metric_filters(self, registry, make_integration, register_devices):
        integration = make_integration()
        (device,) = register_devices(integration, "D1")
        old = datetime(2024, 1, 1)
        new = datetime(2024, 3, 1)
        registry.collect_device_metrics(
            "tenant-a", device.id,
            [reading("total_prints", 1, old), reading("total_prints", 2, new), reading("toner_black_level", 80, new)],
        )

        prints = registry.get_device_metrics("tenant-a", device.id, metric_types=["total_prints"])
        assert [m.numeric_value for m in prints] == [2.0, 1.0]
        recent = registry.get_device_metrics("tenant-a", device.id, from_date=datetime(2024, 2, 1))
        assert len(recent) == 2
        assert len(registry.get_device_metrics("tenant-a", device.id, limit=1)) == 1
        assert registry.get_device_metrics("tenant-b", device.id) == []

    def test_unknown_device(self, registry):
        with pytest.raises(NotFoundError):
            registry.collect_device_metrics("tenant-a", "missing", [reading("total_prints", 1)])


class TestScheduling:
    def test_due_scan(self, registry, make_integration):
        due = make_integration("tenant-a")
        make_integration("tenant-a", status="pending_auth")
        make_integration("tenant-a", status="error")
        other = make_integration("tenant-b")

        found = {i.id for i in registry.get_integrations_due_for_collection()}
        assert found == {due.id, other.id}
        assert [i.id for i in registry.get_integrations_due_for_collection(tenant_id="tenant-b")] == [other.id]

    def test_rate_limited_integration_not_due(self, registry, make_integration):
        limited = make_integration(status="rate_limited")

        due = registry.get_integrations_due_for_collection(utc_now() + timedelta(days=1))
        assert limited.id not in [i.id for i in due]

    def test_future_integrations_not_due(self, registry, make_integration):
        integration = make_integration()
        now = utc_now()
        registry.update_next_collection_time("tenant-a", integration.id, now + timedelta(hours=1))

        assert registry.get_integrations_due_for_collection(now) == []
        assert len(registry.get_integrations_due_for_collection(now + timedelta(hours=2))) == 1

    def test_next_collection_never_moves_backwards(self, registry, make_integration):
        integration = make_integration()
        now = utc_now()

        assert registry.update_next_collection_time("tenant-a", integration.id, now + timedelta(hours=2)) is True
        assert registry.update_next_collection_time("tenant-a", integration.id, now + timedelta(hours=1)) is False

        stored = registry.get_integration_by_id("tenant-a", integration.id)
        assert stored.next_collection_at == now + timedelta(hours=2)
        assert stored.last_collection_at is not None

    def test_static_alias(self, registry):
        assert registry.calculate_next_collection_time("hourly", datetime(2024, 1, 1)) == datetime(2024, 1, 1, 1)


class TestStatistics:
    def test_counts(self, registry, audit, make_integration, register_devices):
        integration = make_integration("tenant-a")
        make_integration("tenant-a", status="error")
        make_integration("tenant-b")
        device, _ = register_devices(integration, "D1", "D2")
        registry.update_device_status("tenant-a", device.id, "online")
        registry.collect_device_metrics("tenant-a", device.id, [reading("total_prints", 1)])
        audit.log_event("tenant-a", integration.id, EventType.DATA_COLLECTION, "success", "Collected 1 metrics")
        audit.log_event("tenant-a", integration.id, EventType.DATA_COLLECTION, "error", "Collection failed")

        stats = registry.get_collection_statistics("tenant-a")

        assert stats["total_integrations"] == 2
        assert stats["active_integrations"] == 1
        assert stats["error_integrations"] == 1
        assert stats["integrations_by_status"] == {"active": 1, "error": 1}
        assert stats["total_devices"] == 2
        assert stats["online_devices"] == 1
        assert stats["metrics_last_24h"] == 1
        assert stats["successful_collections"] == 1
        assert stats["failed_collections"] == 1
        assert stats["last_collection_time"] is not None

        assert registry.get_collection_statistics()["total_integrations"] == 3
