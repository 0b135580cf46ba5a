"""Services module for vendor telemetry collection."""

from device_telemetry.services.audit_log import COLLECTION_EVENTS, AuditLog, EventType, redact
from device_telemetry.services.collection_orchestrator import (
    AdapterKey,
    BatchRunResult,
    CollectionOrchestrator,
    DeviceRunOutcome,
    DeviceRunStatus,
    IntegrationRunResult,
    RunStatus,
    run_batch_sync,
    summarize_outcomes,
)
from device_telemetry.services.integration_registry import (
    IntegrationRegistry,
    add_months,
    calculate_next_collection_time,
    credential_fingerprint,
)

__all__ = [
    # Audit trail
    "AuditLog",
    "EventType",
    "COLLECTION_EVENTS",
    "redact",
    # Integration catalogue
    "IntegrationRegistry",
    "calculate_next_collection_time",
    "add_months",
    "credential_fingerprint",
    # Collection orchestration
    "CollectionOrchestrator",
    "AdapterKey",
    "BatchRunResult",
    "IntegrationRunResult",
    "DeviceRunOutcome",
    "DeviceRunStatus",
    "RunStatus",
    "run_batch_sync",
    "summarize_outcomes",
]
