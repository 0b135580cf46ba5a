"""FMAudit / Printanista adapter.

Basic auth logs in at /api/auth/login with the dealer ID and receives a
bearer token; API key auth sends the key as X-API-Key. Printanista is the
same platform and is served by this adapter.
"""
from __future__ import annotations

import base64
import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from device_telemetry.adapters.base import CollectionResult, DeviceInfo, VendorAdapter, map_device_status
from device_telemetry.db.models import AuthType, MetricCategory, Vendor
from device_telemetry.errors import AuthenticationError
from device_telemetry.normalization.normalizer import KnownField, MeterReading, measurement_time, reading

logger = logging.getLogger(__name__)

TOKEN_TTL_SECONDS = 24 * 60 * 60

METER_FIELDS: Dict[str, KnownField] = {
    "total_pages": KnownField("total_pages", "Total Pages", "pages", MetricCategory.USAGE),
    "black_pages": KnownField("black_pages", "Black Pages", "pages", MetricCategory.USAGE),
    "mono_pages": KnownField("black_pages", "Black Pages", "pages", MetricCategory.USAGE),
    "color_pages": KnownField("color_pages", "Color Pages", "pages", MetricCategory.USAGE),
    "total_prints": KnownField("total_prints", "Total Prints", "prints", MetricCategory.USAGE),
    "total_copies": KnownField("total_copies", "Total Copies", "copies", MetricCategory.USAGE),
    "total_scans": KnownField("total_scans", "Total Scans", "scans", MetricCategory.USAGE),
    "total_fax": KnownField("total_fax", "Total Fax", "fax", MetricCategory.USAGE),
    "duplex_pages": KnownField("duplex_pages", "Duplex Pages", "pages", MetricCategory.USAGE),
    "large_format_pages": KnownField("large_format_pages", "Large Format Pages", "pages", MetricCategory.USAGE),
}


class FMAuditAdapter(VendorAdapter):
    vendor = Vendor.FMAUDIT.value
    platform_name = "FMAudit/Printanista"
    supported_auth_types = (AuthType.BASIC_AUTH.value, AuthType.API_KEY.value)
    required_credentials = {
        AuthType.BASIC_AUTH.value: ("username", "password"),
        AuthType.API_KEY.value: ("api_key",),
    }
    default_capabilities = ("meter_reading", "snmp_monitoring")
    supported_metrics = (
        "total_pages", "black_pages", "color_pages",
        "total_prints", "total_copies", "total_scans", "total_fax",
        "duplex_pages", "large_format_pages",
        "device_status", "device_uptime", "device_errors",
    )

    health_path = "/api/status"
    devices_path = "/api/devices"
    config_suffix = "config"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[float] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self._access_token) and self._token_expires_at is not None and time.time() < self._token_expires_at

    def _authenticate(self) -> None:
        if self.config.auth_type == AuthType.API_KEY.value:
            self._access_token = self.credential("api_key")
            self._token_expires_at = time.time() + TOKEN_TTL_SECONDS
            return

        basic = base64.b64encode(
            f"{self.credential('username')}:{self.credential('password')}".encode("utf-8")
        ).decode("ascii")
        data = self.http.request(
            "POST",
            self.url("/api/auth/login"),
            headers={"Accept": "application/json", "Authorization": f"Basic {basic}"},
            json={"dealer_id": self.credential("dealer_id")},
            retry_auth=False,
        )
        token = (data.get("access_token") or data.get("token")) if isinstance(data, Mapping) else None
        if not token:
            raise AuthenticationError("FMAudit login response did not include a token")
        self._access_token = token
        self._token_expires_at = time.time() + TOKEN_TTL_SECONDS

    def _clear_auth(self) -> None:
        self._access_token = None
        self._token_expires_at = None

    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._access_token:
            if self.config.auth_type == AuthType.BASIC_AUTH.value:
                headers["Authorization"] = f"Bearer {self._access_token}"
            else:
                headers["X-API-Key"] = self._access_token
        if self.credential("dealer_id"):
            headers["X-Dealer-ID"] = str(self.credential("dealer_id"))
        return headers

    def device_path(self, device_id: str) -> str:
        return f"{self.devices_path}/{device_id}"

    def parse_device(self, item: Mapping[str, Any]) -> Optional[DeviceInfo]:
        device_id = item.get("device_id") or item.get("id") or item.get("serial_number")
        if not device_id:
            return None
        return DeviceInfo(
            device_id=str(device_id),
            serial_number=item.get("serial_number"),
            model_number=item.get("model") or item.get("model_name"),
            device_name=item.get("device_name") or item.get("name"),
            ip_address=item.get("ip_address"),
            mac_address=item.get("mac_address"),
            location=item.get("location"),
            capabilities=list(item.get("capabilities") or self.default_capabilities),
            supported_metrics=list(self.supported_metrics),
            status=map_device_status(item.get("status")),
        )

    def _fetch_metrics(self, device_id: str) -> Any:
        return self.http.request("GET", self.url(f"{self.device_path(device_id)}/meters"), headers=self.headers)

    def parse_metrics(self, payload: Mapping[str, Any]) -> List[MeterReading]:
        timestamp = measurement_time(payload, keys=("reading_date", "timestamp"))
        meters = payload.get("meters") or payload.get("counters")
        if isinstance(meters, Mapping) and "black_pages" in meters:
            # black_pages wins over the legacy mono_pages alias
            meters = {k: v for k, v in meters.items() if k != "mono_pages"}
        metrics = self.normalizer.map_known(meters, METER_FIELDS, timestamp)

        device_status = payload.get("device_status")
        if isinstance(device_status, Mapping):
            metrics.append(
                reading(
                    "device_status",
                    device_status.get("status") or "unknown",
                    timestamp,
                    metric_name="Device Status",
                    category=MetricCategory.STATUS,
                    raw=dict(device_status),
                )
            )
            metrics.append(
                reading(
                    "device_uptime",
                    device_status.get("uptime"),
                    timestamp,
                    metric_name="Device Uptime",
                    unit="hours",
                    category=MetricCategory.STATUS,
                    raw={"uptime": device_status.get("uptime")},
                )
            )

        metrics.extend(
            self.normalizer.map_numeric_dict(
                payload.get("toner_coverage"),
                "toner_coverage_{key}",
                timestamp,
                category=MetricCategory.USAGE,
                name_template="{key} Toner Coverage",
            )
        )

        errors = payload.get("errors")
        if errors:
            metrics.append(
                reading(
                    "device_errors",
                    errors,
                    timestamp,
                    metric_name="Device Errors",
                    category=MetricCategory.ERROR,
                    raw={"errors": errors},
                    as_json=True,
                )
            )
        return [m for m in metrics if m is not None]

    def status_from_payload(self, payload: Mapping[str, Any]) -> Optional[str]:
        device_status = payload.get("device_status")
        if isinstance(device_status, Mapping):
            return map_device_status(device_status.get("status"))
        return None

    def get_batch_meter_readings(self, device_ids: List[str]) -> List[CollectionResult]:
        """Read meters for several devices in one request.

        On any failure every requested device gets a failed result.
        """
        started = time.monotonic()
        try:
            self.ensure_authenticated()
            data = self.http.request(
                "POST",
                self.url(f"{self.devices_path}/meters/batch"),
                headers=self.headers,
                json={"device_ids": list(device_ids), "include_status": True},
            )
        except Exception as e:
            logger.warning("FMAudit batch meter reading failed: %s", e)
            elapsed = int((time.monotonic() - started) * 1000)
            return [
                CollectionResult(success=False, device_id=device_id, error=str(e), response_time_ms=elapsed)
                for device_id in device_ids
            ]

        elapsed = int((time.monotonic() - started) * 1000)
        results: List[CollectionResult] = []
        entries = data.get("devices") if isinstance(data, Mapping) else None
        for entry in entries or []:
            if not isinstance(entry, Mapping) or not entry.get("device_id"):
                continue
            results.append(
                CollectionResult(
                    success=True,
                    device_id=str(entry["device_id"]),
                    metrics=self.parse_metrics(entry),
                    raw_response=dict(entry),
                    response_time_ms=elapsed,
                    device_status=self.status_from_payload(entry),
                )
            )
        return results
