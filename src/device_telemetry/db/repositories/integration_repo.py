"""Repository for vendor integrations.

Besides CRUD this owns the two concurrently mutated integration fields,
the rate-limit counter and next_collection_at. Both are changed with
single conditional UPDATE statements so overlapping runs cannot lose
increments or move the schedule backwards.
"""
from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from device_telemetry.db.models import Integration, IntegrationStatus
from device_telemetry.db.repositories.base import BaseRepository

DUE_STATUSES = (IntegrationStatus.ACTIVE.value,)


class IntegrationRepository(BaseRepository[Integration]):
    """Repository for Integration CRUD and scheduling state."""

    def __init__(self, session: Session):
        super().__init__(session, Integration)

    def get_active(self, tenant_id: str) -> list[Integration]:
        """Active integrations of a tenant, newest first."""
        return (
            self._scoped(tenant_id)
            .filter(Integration.is_active.is_(True))
            .order_by(Integration.created_at.desc())
            .all()
        )

    def get_by_fingerprint(self, tenant_id: str, vendor: str, fingerprint: str) -> Integration | None:
        return (
            self._scoped(tenant_id)
            .filter(
                Integration.vendor == vendor,
                Integration.credential_fingerprint == fingerprint,
            )
            .first()
        )

    def get_due(self, now: datetime, tenant_id: str | None = None) -> list[Integration]:
        """Integrations whose next collection time has passed.

        This is the scheduler's scan and the only read that may span
        tenants; every row it returns carries its tenant_id and all
        follow-up work is scoped to it.

        Args:
            now: Reference time (naive UTC)
            tenant_id: Restrict the scan to one tenant

        Returns:
            Active integrations that were never collected or are past due,
            oldest due first
        """
        query = self.session.query(Integration)
        if tenant_id:
            query = query.filter(Integration.tenant_id == tenant_id)
        return (
            query.filter(
                Integration.is_active.is_(True),
                Integration.status.in_(DUE_STATUSES),
                or_(
                    Integration.next_collection_at.is_(None),
                    Integration.next_collection_at <= now,
                ),
            )
            .order_by(Integration.next_collection_at.asc(), Integration.created_at.asc())
            .all()
        )

    def advance_next_collection(
        self,
        tenant_id: str,
        integration_id: str,
        next_at: datetime,
        collected_at: datetime | None = None,
    ) -> bool:
        """Move next_collection_at forward, never backwards.

        Returns:
            True if the row was updated, False if the stored time was
            already later (or the integration does not exist)
        """
        values = {Integration.next_collection_at: next_at}
        if collected_at is not None:
            values[Integration.last_collection_at] = collected_at
        updated = (
            self._scoped(tenant_id)
            .filter(
                Integration.id == integration_id,
                or_(
                    Integration.next_collection_at.is_(None),
                    Integration.next_collection_at < next_at,
                ),
            )
            .update(values, synchronize_session=False)
        )
        if not updated and collected_at is not None:
            (
                self._scoped(tenant_id)
                .filter(Integration.id == integration_id)
                .update({Integration.last_collection_at: collected_at}, synchronize_session=False)
            )
        return bool(updated)

    def reset_rate_window_if_elapsed(
        self,
        tenant_id: str,
        integration_id: str,
        now: datetime,
        window_seconds: int,
    ) -> bool:
        """Start a fresh rate-limit window if the current one has ended.

        The WHERE clause makes this a no-op for every caller but the
        first once a new window is open.
        """
        updated = (
            self._scoped(tenant_id)
            .filter(
                Integration.id == integration_id,
                or_(
                    Integration.rate_limit_reset_at.is_(None),
                    Integration.rate_limit_reset_at <= now,
                ),
            )
            .update(
                {
                    Integration.current_requests: 0,
                    Integration.rate_limit_reset_at: now + timedelta(seconds=window_seconds),
                },
                synchronize_session=False,
            )
        )
        return bool(updated)

    def increment_requests(self, tenant_id: str, integration_id: str, only_below_limit: bool = False) -> bool:
        """Add one to current_requests in a single UPDATE.

        Args:
            only_below_limit: Only increment while current_requests is
                              below rate_limit_requests

        Returns:
            True if a row was incremented
        """
        query = self._scoped(tenant_id).filter(Integration.id == integration_id)
        if only_below_limit:
            query = query.filter(Integration.current_requests < Integration.rate_limit_requests)
        updated = query.update(
            {Integration.current_requests: Integration.current_requests + 1},
            synchronize_session=False,
        )
        return bool(updated)

    def record_outcome(self, tenant_id: str, integration_id: str, succeeded: bool) -> None:
        """Bump error_count or success_count in place."""
        column = Integration.success_count if succeeded else Integration.error_count
        (
            self._scoped(tenant_id)
            .filter(Integration.id == integration_id)
            .update({column: column + 1}, synchronize_session=False)
        )

    def count_by_status(self, tenant_id: str | None = None) -> dict[str, int]:
        """Integration counts keyed by status (all tenants when tenant_id is None)."""
        query = self.session.query(Integration.status, func.count(Integration.id))
        if tenant_id:
            query = query.filter(Integration.tenant_id == tenant_id)
        return {status: count for status, count in query.group_by(Integration.status).all()}
