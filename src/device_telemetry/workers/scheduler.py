"""
Periodic collection scheduler.

Triggers one CollectionOrchestrator pass over due integrations every
SCHEDULER_POLL_INTERVAL_SECONDS until SIGINT/SIGTERM. Each integration's
own collection frequency decides whether a pass actually collects it;
the poll interval only bounds how late a due integration is picked up.
"""
from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from device_telemetry.config.logging_config import setup_logging
from device_telemetry.config.settings import get_settings
from device_telemetry.observability.metrics import start_metrics_server
from device_telemetry.observability.otel import setup_tracing
from device_telemetry.services.collection_orchestrator import CollectionOrchestrator
from device_telemetry.utils import utc_now

logger = logging.getLogger(__name__)

MAX_RECORDED_ERRORS = 20


@dataclass
class SchedulerStatus:
    """Current status of the scheduler."""
    is_running: bool = False
    run_status: str = "idle"  # idle, running, completed, failed
    runs_completed: int = 0
    last_run_id: Optional[str] = None
    last_run_at: Optional[str] = None
    last_run_result: Optional[Dict[str, Any]] = None
    next_run_at: Optional[str] = None
    total_metrics_collected: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CollectionScheduler:
    """
    Background service that runs collection passes on an interval.

    Usage:
        scheduler = CollectionScheduler()
        await scheduler.run_forever()
    """

    def __init__(
        self,
        orchestrator: Optional[CollectionOrchestrator] = None,
        poll_interval: Optional[float] = None,
        run_on_start: Optional[bool] = None,
    ):
        settings = get_settings().scheduler
        self.orchestrator = orchestrator or CollectionOrchestrator()
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval_seconds
        self.run_on_start = settings.run_on_start if run_on_start is None else run_on_start
        self.status = SchedulerStatus()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> Dict[str, Any]:
        """Run one pass now and record it on the status."""
        self.status.run_status = "running"
        try:
            batch = await self.orchestrator.run_batch()
        except Exception as e:
            logger.exception("Scheduled collection pass failed")
            self.status.run_status = "failed"
            self.status.errors = (self.status.errors + [f"{utc_now().isoformat()}: {e}"])[-MAX_RECORDED_ERRORS:]
            return {"error": str(e)}

        summary = batch.to_dict()
        summary.pop("integrations", None)
        self.status.run_status = "completed"
        self.status.runs_completed += 1
        self.status.last_run_id = batch.run_id
        self.status.last_run_at = batch.completed_at.isoformat()
        self.status.last_run_result = summary
        self.status.total_metrics_collected += batch.metrics_collected
        return summary

    async def _loop(self) -> None:
        first = True
        while self._running:
            try:
                if not first or self.run_on_start:
                    await self.run_once()
                first = False

                self.status.next_run_at = (utc_now() + timedelta(seconds=self.poll_interval)).isoformat()
                # Sleep in short steps so stop() is honoured promptly
                elapsed = 0.0
                while elapsed < self.poll_interval and self._running:
                    step = min(1.0, self.poll_interval - elapsed)
                    await asyncio.sleep(step)
                    elapsed += step

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Scheduler loop error: {e}")
                await asyncio.sleep(self.poll_interval)

    async def start(self) -> None:
        """Start the scheduler service."""
        logger.info(f"Starting collection scheduler (poll_interval={self.poll_interval}s)")
        self._running = True
        self.status.is_running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop the scheduler service."""
        logger.info("Stopping collection scheduler...")
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        self.status.is_running = False
        self.orchestrator.close()
        logger.info("Scheduler stopped")

    async def run_forever(self) -> None:
        """Run the scheduler until interrupted."""
        await self.start()

        loop = asyncio.get_running_loop()

        def signal_handler():
            asyncio.create_task(self.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

        # Wait until stopped
        while self._running or self._task is not None:
            await asyncio.sleep(1)


async def main():
    """Entry point for the scheduler service."""
    setup_logging()
    setup_tracing()
    start_metrics_server()
    scheduler = CollectionScheduler()
    await scheduler.run_forever()


if __name__ == "__main__":
    asyncio.run(main())
