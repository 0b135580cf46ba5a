"""
Operator CLI for the telemetry collector.

Examples:
    device-telemetry init-db
    device-telemetry create-integration acme --vendor xerox --auth-type oauth2 \\
        --endpoint https://connectkey.example.com --credentials '{"client_id": "...", "client_secret": "..."}'
    device-telemetry discover acme <integration-id> --register
    device-telemetry run
    device-telemetry schedule --interval 300
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from device_telemetry import __version__
from device_telemetry.config.logging_config import setup_logging
from device_telemetry.db.session import init_db
from device_telemetry.errors import TelemetryError
from device_telemetry.observability.metrics import start_metrics_server
from device_telemetry.observability.otel import setup_tracing
from device_telemetry.services.collection_orchestrator import CollectionOrchestrator, run_batch_sync
from device_telemetry.services.integration_registry import IntegrationRegistry
from device_telemetry.workers.scheduler import CollectionScheduler

logger = logging.getLogger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _integration_summary(integration) -> dict:
    # never include auth_credentials
    return {
        "id": integration.id,
        "tenant_id": integration.tenant_id,
        "vendor": integration.vendor,
        "integration_name": integration.integration_name,
        "api_endpoint": integration.api_endpoint,
        "auth_type": integration.auth_type,
        "collection_frequency": integration.collection_frequency,
        "status": integration.status,
        "last_error": integration.last_error,
        "last_collection_at": integration.last_collection_at,
        "next_collection_at": integration.next_collection_at,
    }


def cmd_init_db(args: argparse.Namespace) -> int:
    db = init_db(args.db_url)
    logger.info("Telemetry store ready at %s", db.engine.url.render_as_string(hide_password=True))
    return 0


def cmd_create_integration(args: argparse.Namespace) -> int:
    init_db(args.db_url)
    integration = IntegrationRegistry().create_integration(
        args.tenant_id,
        vendor=args.vendor,
        auth_type=args.auth_type,
        auth_credentials=json.loads(args.credentials),
        api_endpoint=args.endpoint,
        integration_name=args.name,
        api_version=args.api_version,
        collection_frequency=args.frequency,
        status=args.status,
    )
    _print_json(_integration_summary(integration))
    return 0


def cmd_list_integrations(args: argparse.Namespace) -> int:
    init_db(args.db_url)
    _print_json([_integration_summary(i) for i in IntegrationRegistry().get_integrations(args.tenant_id)])
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    init_db(args.db_url)
    orchestrator = CollectionOrchestrator()
    try:
        result = run_batch_sync(tenant_id=args.tenant_id, orchestrator=orchestrator)
    finally:
        orchestrator.close()
    _print_json(result.to_dict())
    return 0


def cmd_schedule(args: argparse.Namespace) -> int:
    init_db(args.db_url)
    setup_tracing()
    start_metrics_server(args.metrics_port)
    scheduler = CollectionScheduler(poll_interval=args.interval)
    asyncio.run(scheduler.run_forever())
    return 0


def cmd_test_connection(args: argparse.Namespace) -> int:
    init_db(args.db_url)
    success = CollectionOrchestrator().test_integration_connection(args.tenant_id, args.integration_id)
    _print_json({"integration_id": args.integration_id, "success": success})
    return 0 if success else 1


def cmd_discover(args: argparse.Namespace) -> int:
    init_db(args.db_url)
    devices = CollectionOrchestrator().discover_devices_for_integration(
        args.tenant_id, args.integration_id, register=args.register
    )
    _print_json([d.to_dict() for d in devices])
    return 0


def cmd_collect_device(args: argparse.Namespace) -> int:
    init_db(args.db_url)
    result = CollectionOrchestrator().collect_from_device(args.tenant_id, args.device_id)
    _print_json(
        {
            "device_id": result.device_id,
            "success": result.success,
            "error": result.error,
            "response_time_ms": result.response_time_ms,
            "metrics": [m.to_dict() for m in result.metrics],
        }
    )
    return 0 if result.success else 1


def cmd_stats(args: argparse.Namespace) -> int:
    init_db(args.db_url)
    _print_json(IntegrationRegistry().get_collection_statistics(args.tenant_id))
    return 0


def cmd_audit(args: argparse.Namespace) -> int:
    init_db(args.db_url)
    entries = IntegrationRegistry().audit.get_audit_logs(
        args.tenant_id,
        integration_id=args.integration_id,
        category=args.category,
        event_type=args.event_type,
        limit=args.limit,
    )
    _print_json(
        [
            {
                "timestamp": e.timestamp,
                "integration_id": e.integration_id,
                "device_registration_id": e.device_registration_id,
                "event_type": e.event_type,
                "event_category": e.event_category,
                "message": e.message,
                "error_code": e.error_code,
                "data_points_collected": e.data_points_collected,
            }
            for e in entries
        ]
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="device-telemetry",
        description="Collect printer/copier telemetry from vendor fleet APIs.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--db-url", default=None, help="Database URL (default: TELEMETRY_DB_URL / TELEMETRY_DB_PATH).")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create the telemetry tables.")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("create-integration", help="Register a vendor integration for a tenant.")
    p.add_argument("tenant_id")
    p.add_argument("--vendor", required=True)
    p.add_argument("--auth-type", required=True)
    p.add_argument("--credentials", required=True, help="Credential JSON object.")
    p.add_argument("--endpoint", default=None)
    p.add_argument("--name", default=None)
    p.add_argument("--api-version", default=None)
    p.add_argument("--frequency", default="daily")
    p.add_argument("--status", default="pending_auth", help="Initial status (default: pending_auth).")
    p.set_defaults(func=cmd_create_integration)

    p = sub.add_parser("list-integrations", help="List a tenant's active integrations.")
    p.add_argument("tenant_id")
    p.set_defaults(func=cmd_list_integrations)

    p = sub.add_parser("run", help="Run one collection pass over due integrations.")
    p.add_argument("--tenant-id", default=None, help="Only collect this tenant.")
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("schedule", help="Run collection passes periodically until interrupted.")
    p.add_argument("--interval", type=float, default=None, help="Seconds between passes (default: config).")
    p.add_argument("--metrics-port", type=int, default=None, help="Expose Prometheus metrics on this port.")
    p.set_defaults(func=cmd_schedule)

    p = sub.add_parser("test-connection", help="Test an integration's connectivity and credentials.")
    p.add_argument("tenant_id")
    p.add_argument("integration_id")
    p.set_defaults(func=cmd_test_connection)

    p = sub.add_parser("discover", help="Discover devices on the vendor platform.")
    p.add_argument("tenant_id")
    p.add_argument("integration_id")
    p.add_argument("--register", action="store_true", help="Register discovered devices.")
    p.set_defaults(func=cmd_discover)

    p = sub.add_parser("collect-device", help="Collect one device now.")
    p.add_argument("tenant_id")
    p.add_argument("device_id", help="Device registration ID.")
    p.set_defaults(func=cmd_collect_device)

    p = sub.add_parser("stats", help="Show collection statistics.")
    p.add_argument("--tenant-id", default=None)
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("audit", help="Show a tenant's audit log, newest first.")
    p.add_argument("tenant_id")
    p.add_argument("--integration-id", default=None)
    p.add_argument("--category", default=None, choices=["success", "error", "warning", "info"])
    p.add_argument("--event-type", default=None)
    p.add_argument("--limit", type=int, default=50)
    p.set_defaults(func=cmd_audit)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level)

    try:
        return args.func(args)
    except TelemetryError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON argument: %s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
