from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional

_run_id_ctx: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
_tenant_id_ctx: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)
_integration_id_ctx: ContextVar[Optional[str]] = ContextVar("integration_id", default=None)
_vendor_ctx: ContextVar[Optional[str]] = ContextVar("vendor", default=None)


@dataclass(frozen=True)
class CollectionContext:
    run_id: Optional[str]
    tenant_id: Optional[str]
    integration_id: Optional[str]
    vendor: Optional[str]


def set_collection_context(
    *,
    run_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    integration_id: Optional[str] = None,
    vendor: Optional[str] = None,
) -> None:
    _run_id_ctx.set(run_id)
    _tenant_id_ctx.set(tenant_id)
    _integration_id_ctx.set(integration_id)
    _vendor_ctx.set(vendor)


def set_run_id(run_id: Optional[str]) -> None:
    _run_id_ctx.set(run_id)


def set_integration(
    tenant_id: Optional[str],
    integration_id: Optional[str],
    vendor: Optional[str] = None,
) -> None:
    _tenant_id_ctx.set(tenant_id)
    _integration_id_ctx.set(integration_id)
    _vendor_ctx.set(vendor)


def clear_collection_context() -> None:
    _run_id_ctx.set(None)
    _tenant_id_ctx.set(None)
    _integration_id_ctx.set(None)
    _vendor_ctx.set(None)


def get_run_id() -> Optional[str]:
    return _run_id_ctx.get()


def get_collection_context() -> CollectionContext:
    return CollectionContext(
        run_id=_run_id_ctx.get(),
        tenant_id=_tenant_id_ctx.get(),
        integration_id=_integration_id_ctx.get(),
        vendor=_vendor_ctx.get(),
    )
