"""
Collection Orchestrator with bounded per-integration parallelism.

Runs one scheduled pass over the integrations that are due:
- Integrations are processed concurrently under an asyncio.Semaphore
  (COLLECTION_MAX_PARALLEL_INTEGRATIONS).
- Devices of one integration are collected sequentially with a politeness
  delay, because vendors rate limit per credential.
- Every device call is timeout-bound (COLLECTION_DEVICE_TIMEOUT_SECONDS).
- Only one run per integration may be in flight; a second one is skipped.

Blocking work (vendor HTTP, database) runs in the default executor.
"""
from __future__ import annotations

import asyncio
import contextvars
import functools
import hashlib
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Set, Tuple

from device_telemetry.adapters.base import AdapterConfig, CollectionResult, DeviceInfo, VendorAdapter
from device_telemetry.adapters.registry import AdapterRegistry
from device_telemetry.config.settings import get_settings
from device_telemetry.context import set_integration, set_run_id
from device_telemetry.db.models import DeviceRegistration, EventCategory, Integration, IntegrationStatus
from device_telemetry.errors import ConfigurationError, NotFoundError
from device_telemetry.observability.metrics import record_device_collection, record_integration_run
from device_telemetry.observability.otel import get_tracer
from device_telemetry.services.audit_log import AuditLog, EventType
from device_telemetry.services.integration_registry import IntegrationRegistry, calculate_next_collection_time
from device_telemetry.utils import utc_now

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

RATE_LIMIT_CODE = "rate_limited"
TIMEOUT_CODE = "timeout"
STORAGE_ERROR_CODE = "storage_error"


class RunStatus(str, Enum):
    """Integration-level run state."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    TOTAL_FAILURE = "total_failure"
    SKIPPED = "skipped"


class DeviceRunStatus(str, Enum):
    PENDING = "pending"
    COLLECTING = "collecting"
    COLLECTED = "collected"
    FAILED = "failed"


class AdapterKey(NamedTuple):
    vendor: str
    integration_id: str


def _config_hash(config: AdapterConfig) -> str:
    payload = {
        "api_endpoint": config.api_endpoint,
        "auth_type": config.auth_type,
        "auth_credentials": config.auth_credentials,
        "api_version": config.api_version,
        "settings": config.settings,
        "field_mappings": config.field_mappings,
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode("utf-8")).hexdigest()


def _failed_result(device: DeviceRegistration, error: str, code: str, response_time_ms: int = 0) -> CollectionResult:
    return CollectionResult(
        success=False,
        device_id=device.vendor_device_id,
        error=error,
        error_code=code,
        response_time_ms=response_time_ms,
    )


@dataclass
class DeviceRunOutcome:
    """Outcome of one device within a run."""
    device_registration_id: str
    vendor_device_id: str
    status: DeviceRunStatus = DeviceRunStatus.PENDING
    metrics_collected: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None
    response_time_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status == DeviceRunStatus.COLLECTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_registration_id": self.device_registration_id,
            "vendor_device_id": self.vendor_device_id,
            "status": self.status.value,
            "metrics_collected": self.metrics_collected,
            "error": self.error,
            "error_code": self.error_code,
            "response_time_ms": self.response_time_ms,
        }


@dataclass
class IntegrationRunResult:
    """Result of one integration's collection run."""
    integration_id: str
    tenant_id: str
    vendor: str
    status: RunStatus = RunStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    devices: List[DeviceRunOutcome] = field(default_factory=list)
    integration_status: Optional[str] = None
    error: Optional[str] = None
    next_collection_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def success_count(self) -> int:
        return sum(1 for d in self.devices if d.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for d in self.devices if not d.success)

    @property
    def metrics_collected(self) -> int:
        return sum(d.metrics_collected for d in self.devices)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "integration_id": self.integration_id,
            "tenant_id": self.tenant_id,
            "vendor": self.vendor,
            "status": self.status.value,
            "integration_status": self.integration_status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "metrics_collected": self.metrics_collected,
            "error": self.error,
            "next_collection_at": self.next_collection_at.isoformat() if self.next_collection_at else None,
            "devices": [d.to_dict() for d in self.devices],
        }


@dataclass
class BatchRunResult:
    """Result of a scheduled pass over due integrations."""
    run_id: str
    started_at: datetime
    completed_at: datetime
    integrations: List[IntegrationRunResult]

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def count(self, status: RunStatus) -> int:
        return sum(1 for r in self.integrations if r.status == status)

    @property
    def metrics_collected(self) -> int:
        return sum(r.metrics_collected for r in self.integrations)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/storage."""
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "total_integrations": len(self.integrations),
            "success_count": self.count(RunStatus.SUCCESS),
            "partial_failure_count": self.count(RunStatus.PARTIAL_FAILURE),
            "total_failure_count": self.count(RunStatus.TOTAL_FAILURE),
            "skipped_count": self.count(RunStatus.SKIPPED),
            "metrics_collected": self.metrics_collected,
            "integrations": [r.to_dict() for r in self.integrations],
        }


def summarize_outcomes(devices: List[DeviceRunOutcome]) -> Tuple[RunStatus, str, Optional[str]]:
    """Aggregate device outcomes into (run status, integration status, last_error).

    - no devices, or all collected: success, active, no error
    - some failed: partial_failure, active, "Partial failure: N of M failed"
    - all failed: total_failure, error (rate_limited when every failure was
      a rate-limit failure)
    """
    failed = [d for d in devices if not d.success]
    if not failed:
        return RunStatus.SUCCESS, IntegrationStatus.ACTIVE.value, None

    total = len(devices)
    if len(failed) < total:
        message = f"Partial failure: {len(failed)} of {total} failed"
        return RunStatus.PARTIAL_FAILURE, IntegrationStatus.ACTIVE.value, message

    if all(d.error_code == RATE_LIMIT_CODE for d in failed):
        return (
            RunStatus.TOTAL_FAILURE,
            IntegrationStatus.RATE_LIMITED.value,
            f"Rate limit exceeded: {total} of {total} failed",
        )
    return (
        RunStatus.TOTAL_FAILURE,
        IntegrationStatus.ERROR.value,
        f"All devices failed: {total} of {total} failed ({failed[0].error})",
    )


class CollectionOrchestrator:
    """
    Drives vendor adapters over due integrations and records the outcome.

    Usage:
        orchestrator = CollectionOrchestrator()
        result = await orchestrator.run_batch()
        # or, outside an event loop
        result = run_batch_sync()
    """

    def __init__(
        self,
        registry: Optional[IntegrationRegistry] = None,
        audit: Optional[AuditLog] = None,
        adapter_factory: Optional[Callable[[AdapterConfig], VendorAdapter]] = None,
        inter_device_delay: Optional[float] = None,
        device_timeout: Optional[float] = None,
        max_parallel: Optional[int] = None,
    ):
        settings = get_settings().collection
        self.audit = audit or (registry.audit if registry else AuditLog())
        self.registry = registry or IntegrationRegistry(audit=self.audit)
        self._adapter_factory = adapter_factory or AdapterRegistry.create
        self.inter_device_delay = (
            settings.inter_device_delay_seconds if inter_device_delay is None else inter_device_delay
        )
        self.device_timeout = device_timeout or settings.device_timeout_seconds
        self.max_parallel = max_parallel or settings.max_parallel_integrations

        self._adapters: Dict[AdapterKey, Tuple[str, VendorAdapter]] = {}
        self._adapters_lock = threading.Lock()
        self._in_flight: Set[str] = set()
        self._in_flight_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Adapter cache
    # ------------------------------------------------------------------

    def get_adapter(self, integration: Integration) -> VendorAdapter:
        """Cached adapter for an integration, rebuilt when its connection settings change."""
        key = AdapterKey(integration.vendor, integration.id)
        config = AdapterConfig.from_integration(integration)
        config_hash = _config_hash(config)
        with self._adapters_lock:
            cached = self._adapters.get(key)
            if cached is not None and cached[0] == config_hash:
                return cached[1]
            if cached is not None:
                logger.info(f"Connection settings changed for {key.vendor}/{key.integration_id}, rebuilding adapter")
                cached[1].close()
            adapter = self._adapter_factory(config)
            self._adapters[key] = (config_hash, adapter)
            return adapter

    def evict_adapter(self, vendor: str, integration_id: str) -> bool:
        with self._adapters_lock:
            cached = self._adapters.pop(AdapterKey(vendor, integration_id), None)
        if cached is None:
            return False
        cached[1].close()
        return True

    def close(self) -> None:
        with self._adapters_lock:
            adapters = [adapter for _, adapter in self._adapters.values()]
            self._adapters.clear()
        for adapter in adapters:
            adapter.close()

    # ------------------------------------------------------------------
    # Run lock
    # ------------------------------------------------------------------

    def _claim(self, integration_id: str) -> bool:
        with self._in_flight_lock:
            if integration_id in self._in_flight:
                return False
            self._in_flight.add(integration_id)
            return True

    def _release(self, integration_id: str) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(integration_id)

    def is_running(self, integration_id: str) -> bool:
        with self._in_flight_lock:
            return integration_id in self._in_flight

    # ------------------------------------------------------------------
    # Per-device work (sync, shared by batch and manual paths)
    # ------------------------------------------------------------------

    def _acquire_slot(self, integration: Integration, device: DeviceRegistration) -> Optional[CollectionResult]:
        """Take one rate-limit slot, or return the failed result when denied."""
        if self.registry.try_acquire_rate_limit(integration.tenant_id, integration.id):
            return None
        logger.warning(f"Rate limit exceeded for integration {integration.id}, skipping device {device.vendor_device_id}")
        return _failed_result(device, "Rate limit exceeded", RATE_LIMIT_CODE)

    def _record_device_result(
        self,
        integration: Integration,
        device: DeviceRegistration,
        result: CollectionResult,
        outcome: DeviceRunOutcome,
        event_type: EventType = EventType.DATA_COLLECTION,
    ) -> None:
        """Persist a successful result and audit either way.

        A failed write marks only this device as failed.
        """
        outcome.response_time_ms = result.response_time_ms
        label = device.serial_number or device.vendor_device_id
        if result.success and result.metrics:
            try:
                count = self.registry.collect_device_metrics(
                    integration.tenant_id,
                    device.id,
                    result.metrics,
                    device_status=result.device_status,
                    collection_method=integration.integration_method,
                    data_source=integration.platform_name,
                )
            except Exception as e:
                logger.exception(f"Storing metrics for device {device.vendor_device_id} failed")
                result = replace(
                    result,
                    success=False,
                    error=f"Storing metrics failed: {e}",
                    error_code=STORAGE_ERROR_CODE,
                )
            else:
                outcome.status = DeviceRunStatus.COLLECTED
                outcome.metrics_collected = count
                record_device_collection(integration.vendor, True, result.response_time_ms, count)
                self.audit.log_event(
                    integration.tenant_id,
                    integration.id,
                    event_type,
                    EventCategory.SUCCESS,
                    f"Collected {count} metrics from device {label}",
                    device_id=device.id,
                    response_data=result.raw_response,
                    http_status=result.http_status,
                    response_time_ms=result.response_time_ms,
                    data_points_collected=count,
                )
                return

        error = result.error if not result.success else "No metrics returned"
        outcome.status = DeviceRunStatus.FAILED
        record_device_collection(integration.vendor, False, result.response_time_ms)
        outcome.error = error
        outcome.error_code = result.error_code or ("no_metrics" if result.success else None)
        self.audit.log_event(
            integration.tenant_id,
            integration.id,
            event_type,
            EventCategory.ERROR,
            f"Collection from device {label} failed: {error}",
            device_id=device.id,
            response_data=result.raw_response,
            http_status=result.http_status,
            response_time_ms=result.response_time_ms,
            error_code=outcome.error_code,
            error_details={"error": error},
            data_points_collected=0,
        )

    def _finish_run(self, integration: Integration, result: IntegrationRunResult) -> None:
        run_status, status, error = summarize_outcomes(result.devices)
        result.status = run_status
        result.integration_status = status
        result.error = error
        self.registry.update_integration_status(integration.tenant_id, integration.id, status, error=error)
        if status == IntegrationStatus.RATE_LIMITED.value:
            self.audit.log_event(
                integration.tenant_id,
                integration.id,
                EventType.RATE_LIMITED,
                EventCategory.WARNING,
                error,
            )
        self._reschedule(integration, result)

    def _reschedule(self, integration: Integration, result: IntegrationRunResult) -> None:
        now = utc_now()
        next_at = calculate_next_collection_time(integration.collection_frequency, now)
        self.registry.update_next_collection_time(integration.tenant_id, integration.id, next_at, collected_at=now)
        result.next_collection_at = next_at

    def _fail_integration(self, integration: Integration, result: IntegrationRunResult, exc: BaseException) -> None:
        """Per-integration exception boundary. Records the failure and never raises."""
        message = f"Collection run failed: {exc}"
        result.status = RunStatus.TOTAL_FAILURE
        result.integration_status = IntegrationStatus.ERROR.value
        result.error = message
        self.audit.log_event(
            integration.tenant_id,
            integration.id,
            EventType.INTEGRATION_ERROR,
            EventCategory.ERROR,
            message,
            error_code=type(exc).__name__,
            error_details={"exception": type(exc).__name__, "message": str(exc)},
        )
        try:
            self.registry.update_integration_status(
                integration.tenant_id, integration.id, IntegrationStatus.ERROR, error=message
            )
            self._reschedule(integration, result)
        except Exception:
            logger.exception(f"Failed to record failure state for integration {integration.id}")

    # ------------------------------------------------------------------
    # Scheduled runs (async)
    # ------------------------------------------------------------------

    async def _in_executor(self, func: Callable[..., Any], *args: Any) -> Any:
        # Executor threads do not inherit contextvars on their own
        ctx = contextvars.copy_context()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(ctx.run, func, *args))

    async def _collect_device(
        self,
        adapter: VendorAdapter,
        integration: Integration,
        device: DeviceRegistration,
    ) -> DeviceRunOutcome:
        outcome = DeviceRunOutcome(device_registration_id=device.id, vendor_device_id=device.vendor_device_id)
        outcome.status = DeviceRunStatus.COLLECTING

        try:
            result = await self._in_executor(self._acquire_slot, integration, device)
            if result is None:
                result = await asyncio.wait_for(
                    self._in_executor(adapter.collect_device_metrics, device.vendor_device_id),
                    timeout=self.device_timeout,
                )
        except asyncio.TimeoutError:
            logger.warning(
                f"Device {device.vendor_device_id} of integration {integration.id} "
                f"timed out after {self.device_timeout}s"
            )
            result = _failed_result(
                device, f"Timed out after {self.device_timeout}s", TIMEOUT_CODE, int(self.device_timeout * 1000)
            )
        except Exception as e:
            logger.exception(f"Collecting device {device.vendor_device_id} of integration {integration.id} failed")
            result = _failed_result(device, str(e), type(e).__name__)

        await self._in_executor(self._record_device_result, integration, device, result, outcome)
        return outcome

    async def run_integration(self, integration: Integration) -> IntegrationRunResult:
        """Collect every registered device of one integration.

        Never raises: failures are recorded on the result, in the audit
        log and on the integration's status.
        """
        result = IntegrationRunResult(
            integration_id=integration.id,
            tenant_id=integration.tenant_id,
            vendor=integration.vendor,
        )
        if not self._claim(integration.id):
            logger.info(f"Integration {integration.id} is already being collected, skipping")
            result.status = RunStatus.SKIPPED
            return result

        set_integration(integration.tenant_id, integration.id, integration.vendor)
        result.status = RunStatus.RUNNING
        result.started_at = utc_now()
        with tracer.start_as_current_span("collection.integration") as span:
            span.set_attribute("telemetry.tenant_id", integration.tenant_id)
            span.set_attribute("telemetry.integration_id", integration.id)
            span.set_attribute("telemetry.vendor", integration.vendor)
            try:
                try:
                    adapter = self.get_adapter(integration)
                    devices = await self._in_executor(
                        self.registry.get_devices, integration.tenant_id, integration.id
                    )
                    logger.info(
                        f"Collecting {len(devices)} devices for {integration.vendor} integration {integration.id}"
                    )

                    for index, device in enumerate(devices):
                        if index and self.inter_device_delay > 0:
                            await asyncio.sleep(self.inter_device_delay)
                        outcome = await self._collect_device(adapter, integration, device)
                        result.devices.append(outcome)
                        if outcome.error_code == TIMEOUT_CODE:
                            # the timed-out call may still be running on this adapter
                            self.evict_adapter(integration.vendor, integration.id)
                            adapter = self.get_adapter(integration)

                    await self._in_executor(self._finish_run, integration, result)
                except Exception as e:
                    logger.exception(f"Collection run for integration {integration.id} failed")
                    span.record_exception(e)
                    await self._in_executor(self._fail_integration, integration, result, e)
            finally:
                result.completed_at = utc_now()
                self._release(integration.id)
                set_integration(None, None)
            span.set_attribute("telemetry.run_status", result.status.value)
            span.set_attribute("telemetry.devices_failed", result.failure_count)

        record_integration_run(integration.vendor, result.status.value)
        logger.info(
            f"Integration {integration.id} finished: {result.status.value}, "
            f"{result.success_count}/{len(result.devices)} devices, "
            f"{result.metrics_collected} metrics"
        )
        return result

    async def run_batch(
        self,
        now: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
        integrations: Optional[List[Integration]] = None,
    ) -> BatchRunResult:
        """
        Run one pass over the integrations due for collection.

        Args:
            now: Reference time for the due scan (naive UTC)
            tenant_id: Restrict the pass to one tenant
            integrations: Explicit integrations to run instead of the due scan

        Returns:
            BatchRunResult with one entry per integration
        """
        run_id = uuid.uuid4().hex[:12]
        set_run_id(run_id)
        started_at = utc_now()

        if integrations is None:
            integrations = await self._in_executor(
                self.registry.get_integrations_due_for_collection, now, tenant_id
            )

        logger.info(
            f"Starting collection run {run_id}: {len(integrations)} integrations, "
            f"max_parallel={self.max_parallel}"
        )

        semaphore = asyncio.Semaphore(self.max_parallel)

        async def guarded(integration: Integration) -> IntegrationRunResult:
            async with semaphore:
                return await self.run_integration(integration)

        results = await asyncio.gather(*[guarded(i) for i in integrations])

        batch = BatchRunResult(
            run_id=run_id,
            started_at=started_at,
            completed_at=utc_now(),
            integrations=list(results),
        )
        logger.info(
            f"Collection run {run_id} complete: {batch.count(RunStatus.SUCCESS)}/{len(results)} succeeded, "
            f"metrics={batch.metrics_collected}, duration={batch.duration_seconds:.2f}s"
        )
        set_run_id(None)
        return batch

    # ------------------------------------------------------------------
    # Manual paths (sync)
    # ------------------------------------------------------------------

    def test_integration_connection(self, tenant_id: str, integration_id: str) -> bool:
        """Check reachability and credentials of one integration.

        A passing test moves a pending_auth, error or rate_limited
        integration back to active.

        Raises:
            NotFoundError: Integration not found for this tenant
            ConfigurationError: Config can never authenticate
        """
        integration = self.registry.require_integration(tenant_id, integration_id)
        set_integration(tenant_id, integration_id, integration.vendor)
        started = time.monotonic()
        try:
            adapter = self.get_adapter(integration)
            adapter.validate_config()
            success = adapter.test_connection() and adapter.authenticate()
        except ConfigurationError as e:
            self.audit.log_event(
                tenant_id, integration_id, EventType.CONNECTION_TEST, EventCategory.ERROR,
                f"Connection test error: {e}", error_code="configuration_error",
            )
            raise
        finally:
            set_integration(None, None)

        elapsed = int((time.monotonic() - started) * 1000)
        self.audit.log_event(
            tenant_id,
            integration_id,
            EventType.CONNECTION_TEST,
            EventCategory.SUCCESS if success else EventCategory.ERROR,
            "Connection test successful" if success else "Connection test failed",
            response_time_ms=elapsed,
        )
        recoverable = (
            IntegrationStatus.PENDING_AUTH.value,
            IntegrationStatus.ERROR.value,
            IntegrationStatus.RATE_LIMITED.value,
        )
        if success and integration.status in recoverable:
            self.registry.update_integration_status(tenant_id, integration_id, IntegrationStatus.ACTIVE)
        return success

    def discover_devices_for_integration(
        self,
        tenant_id: str,
        integration_id: str,
        register: bool = False,
    ) -> List[DeviceInfo]:
        """List the integration's devices on the vendor platform.

        Discovery failures are audited and yield an empty list.

        Args:
            register: Also register (or refresh) every discovered device

        Raises:
            NotFoundError: Integration not found for this tenant
        """
        integration = self.registry.require_integration(tenant_id, integration_id)
        set_integration(tenant_id, integration_id, integration.vendor)
        try:
            devices = self.get_adapter(integration).discover_devices()
        except Exception as e:
            logger.warning(f"Device discovery for integration {integration_id} failed: {e}")
            self.audit.log_event(
                tenant_id, integration_id, EventType.DEVICE_DISCOVERY, EventCategory.ERROR,
                f"Device discovery failed: {e}", error_code=type(e).__name__,
            )
            return []
        finally:
            set_integration(None, None)

        self.audit.log_event(
            tenant_id,
            integration_id,
            EventType.DEVICE_DISCOVERY,
            EventCategory.SUCCESS,
            f"Discovered {len(devices)} devices",
            response_data={"device_ids": [d.device_id for d in devices]},
        )
        if register:
            for device in devices:
                self.registry.register_device(tenant_id, integration_id, device)
        return devices

    def _resolve_device(self, tenant_id: str, device_id: str) -> Tuple[DeviceRegistration, Integration]:
        device = self.registry.get_device_by_id(tenant_id, device_id)
        if device is None:
            raise NotFoundError(f"Device {device_id} not found")
        integration = self.registry.require_integration(tenant_id, device.integration_id)
        return device, integration

    def collect_from_device(self, tenant_id: str, device_id: str) -> CollectionResult:
        """Collect one device now, outside the schedule.

        Raises:
            NotFoundError: Device or its integration not found for this tenant
        """
        device, integration = self._resolve_device(tenant_id, device_id)
        set_integration(tenant_id, integration.id, integration.vendor)
        try:
            result = self._acquire_slot(integration, device)
            if result is None:
                result = self.get_adapter(integration).collect_device_metrics(device.vendor_device_id)
            outcome = DeviceRunOutcome(device_registration_id=device.id, vendor_device_id=device.vendor_device_id)
            self._record_device_result(integration, device, result, outcome, EventType.MANUAL_COLLECTION)
        finally:
            set_integration(None, None)
        return result

    def update_device_config(self, tenant_id: str, device_id: str, config: Mapping[str, Any]) -> bool:
        """Push a configuration change to one device.

        Raises:
            NotFoundError: Device or its integration not found for this tenant
        """
        device, integration = self._resolve_device(tenant_id, device_id)
        success = self.get_adapter(integration).update_device_config(device.vendor_device_id, config)
        self.audit.log_event(
            tenant_id,
            integration.id,
            EventType.DEVICE_CONFIG_UPDATED,
            EventCategory.SUCCESS if success else EventCategory.ERROR,
            f"Configuration update for device {device.vendor_device_id} "
            f"{'applied' if success else 'failed'}",
            device_id=device.id,
            request_data=dict(config),
        )
        return success

    def delete_integration(self, tenant_id: str, integration_id: str) -> bool:
        """Soft-delete an integration and drop its cached adapter."""
        integration = self.registry.get_integration_by_id(tenant_id, integration_id)
        if integration is None:
            return False
        deleted = self.registry.delete_integration(tenant_id, integration_id)
        self.evict_adapter(integration.vendor, integration_id)
        return deleted

    def get_collection_statistics(self, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        stats = self.registry.get_collection_statistics(tenant_id)
        with self._in_flight_lock:
            stats["running_integrations"] = len(self._in_flight)
        return stats


# Synchronous wrapper for non-async contexts
def run_batch_sync(
    now: Optional[datetime] = None,
    tenant_id: Optional[str] = None,
    orchestrator: Optional[CollectionOrchestrator] = None,
) -> BatchRunResult:
    """
    Synchronous wrapper for one collection pass.

    Raises:
        RuntimeError: Called from inside a running event loop
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        orchestrator = orchestrator or CollectionOrchestrator()
        return asyncio.run(orchestrator.run_batch(now=now, tenant_id=tenant_id))
    raise RuntimeError(
        "Cannot use run_batch_sync from within an async context. "
        "Use orchestrator.run_batch() directly instead."
    )
