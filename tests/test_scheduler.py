"""Tests for the periodic collection scheduler."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

from device_telemetry.services.collection_orchestrator import BatchRunResult
from device_telemetry.utils import utc_now
from device_telemetry.workers.scheduler import CollectionScheduler


def _mock_orchestrator(**run_batch_kwargs):
    orchestrator = MagicMock()
    orchestrator.run_batch = AsyncMock(**run_batch_kwargs)
    return orchestrator


def _empty_batch(run_id: str = "abc123") -> BatchRunResult:
    now = utc_now()
    return BatchRunResult(run_id=run_id, started_at=now, completed_at=now, integrations=[])


class TestRunOnce:
    def test_records_summary(self, orchestrator, adapter_factory, results, make_integration, register_devices):
        integration = make_integration()
        register_devices(integration, "A")
        adapter_factory.results["A"] = results.ok("A")
        scheduler = CollectionScheduler(orchestrator=orchestrator, poll_interval=60, run_on_start=False)

        summary = asyncio.run(scheduler.run_once())

        assert "integrations" not in summary
        assert summary["success_count"] == 1
        assert scheduler.status.run_status == "completed"
        assert scheduler.status.runs_completed == 1
        assert scheduler.status.total_metrics_collected == 2
        assert scheduler.status.last_run_id == summary["run_id"]

    def test_failure_recorded(self):
        scheduler = CollectionScheduler(
            orchestrator=_mock_orchestrator(side_effect=RuntimeError("boom")), poll_interval=60
        )

        assert asyncio.run(scheduler.run_once()) == {"error": "boom"}
        assert scheduler.status.run_status == "failed"
        assert scheduler.status.runs_completed == 0
        assert scheduler.status.errors[-1].endswith("boom")


class TestLifecycle:
    def test_start_runs_immediately_and_stop_closes(self):
        orchestrator = _mock_orchestrator(return_value=_empty_batch())
        scheduler = CollectionScheduler(orchestrator=orchestrator, poll_interval=60, run_on_start=True)

        async def lifecycle():
            await scheduler.start()
            assert scheduler.status.is_running is True
            for _ in range(100):
                if scheduler.status.runs_completed:
                    break
                await asyncio.sleep(0.01)
            await scheduler.stop()

        asyncio.run(lifecycle())

        assert scheduler.status.runs_completed == 1
        assert scheduler.status.last_run_id == "abc123"
        assert scheduler.status.next_run_at is not None
        assert scheduler.status.is_running is False
        orchestrator.close.assert_called_once()

    def test_run_on_start_disabled_waits_for_interval(self):
        orchestrator = _mock_orchestrator(return_value=_empty_batch())
        scheduler = CollectionScheduler(orchestrator=orchestrator, poll_interval=60, run_on_start=False)

        async def lifecycle():
            await scheduler.start()
            await asyncio.sleep(0.05)
            await scheduler.stop()

        asyncio.run(lifecycle())

        orchestrator.run_batch.assert_not_called()
