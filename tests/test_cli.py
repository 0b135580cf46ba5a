"""Tests for the operator CLI."""
import json

import pytest

from device_telemetry.cli import main as cli


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    # setup_logging installs a stdout handler, which would pollute the JSON output
    monkeypatch.setattr(cli, "setup_logging", lambda level=None: None)


def _run(capsys, *argv):
    code = cli.main(list(argv))
    out = capsys.readouterr().out
    return code, (json.loads(out) if out.strip() else None)


def _create(capsys, tenant_id="acme", api_key="secret-key-123", vendor="canon"):
    return _run(
        capsys,
        "create-integration", tenant_id,
        "--vendor", vendor,
        "--auth-type", "api_key",
        "--endpoint", "https://fleet.example.com",
        "--credentials", json.dumps({"api_key": api_key}),
    )


class TestIntegrationCommands:
    def test_init_db(self, db, capsys):
        assert _run(capsys, "init-db") == (0, None)

    def test_create_and_list(self, db, capsys):
        code, created = _create(capsys)
        assert code == 0
        assert created["vendor"] == "canon"
        assert created["status"] == "pending_auth"
        assert "auth_credentials" not in created

        code, listed = _run(capsys, "list-integrations", "acme")
        assert code == 0
        assert [i["id"] for i in listed] == [created["id"]]
        assert "secret-key-123" not in json.dumps(listed)

        assert _run(capsys, "list-integrations", "other-tenant") == (0, [])

    def test_invalid_credentials_json(self, db, capsys):
        code, _ = _run(
            capsys,
            "create-integration", "acme", "--vendor", "canon", "--auth-type", "api_key",
            "--endpoint", "https://fleet.example.com", "--credentials", "{not json",
        )
        assert code == 2

    def test_unsupported_vendor(self, db, capsys):
        code, output = _create(capsys, vendor="brother")
        assert code == 1
        assert output is None


class TestReportingCommands:
    def test_run_with_nothing_due(self, db, capsys):
        code, summary = _run(capsys, "run")
        assert code == 0
        assert summary["total_integrations"] == 0
        assert summary["integrations"] == []

    def test_stats(self, db, capsys):
        _create(capsys)
        code, stats = _run(capsys, "stats", "--tenant-id", "acme")
        assert code == 0
        assert stats["total_integrations"] == 1
        assert stats["integrations_by_status"] == {"pending_auth": 1}

    def test_audit(self, db, capsys):
        _, created = _create(capsys)
        code, entries = _run(capsys, "audit", "acme", "--event-type", "integration_created")
        assert code == 0
        assert len(entries) == 1
        assert entries[0]["integration_id"] == created["id"]
        assert entries[0]["event_category"] == "info"

    def test_collect_unknown_device(self, db, capsys):
        assert _run(capsys, "collect-device", "acme", "missing") == (1, None)
