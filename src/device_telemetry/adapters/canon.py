"""Canon Data Collection Agent adapter.

Supports certificate auth (the agent trusts the installed client
certificate, so no token exchange happens) and API key auth (key is
exchanged for a bearer token at /api/v1/auth/token).
"""
from __future__ import annotations

import time
from typing import Any, Dict, List, Mapping, Optional

from device_telemetry.adapters.base import DeviceInfo, VendorAdapter, map_device_status
from device_telemetry.db.models import AuthType, MetricCategory, Vendor
from device_telemetry.errors import AuthenticationError
from device_telemetry.normalization.normalizer import KnownField, MeterReading, measurement_time, reading

CERTIFICATE_TOKEN = "canon_cert_token"
TOKEN_TTL_SECONDS = 24 * 60 * 60

COUNTER_FIELDS: Dict[str, KnownField] = {
    "total_prints": KnownField("total_prints", "Total Print Count", "pages", MetricCategory.USAGE),
    "bw_prints": KnownField("black_white_prints", "Black & White Print Count", "pages", MetricCategory.USAGE),
    "color_prints": KnownField("color_prints", "Color Print Count", "pages", MetricCategory.USAGE),
    "total_copies": KnownField("total_copies", "Total Copy Count", "pages", MetricCategory.USAGE),
    "bw_copies": KnownField("black_white_copies", "Black & White Copy Count", "pages", MetricCategory.USAGE),
    "color_copies": KnownField("color_copies", "Color Copy Count", "pages", MetricCategory.USAGE),
    "total_scans": KnownField("total_scans", "Total Scan Count", "pages", MetricCategory.USAGE),
    "total_fax": KnownField("total_fax", "Total Fax Count", "pages", MetricCategory.USAGE),
}


class CanonAdapter(VendorAdapter):
    vendor = Vendor.CANON.value
    platform_name = "Canon Data Collection Agent"
    supported_auth_types = (AuthType.CERTIFICATE.value, AuthType.API_KEY.value)
    required_credentials = {AuthType.API_KEY.value: ("api_key",)}
    default_capabilities = ("meter_reading", "status_monitoring")
    supported_metrics = (
        "total_prints", "black_white_prints", "color_prints",
        "total_copies", "black_white_copies", "color_copies",
        "total_scans", "total_fax",
        "toner_black_level", "toner_cyan_level", "toner_magenta_level", "toner_yellow_level",
        "paper_level", "drum_life_remaining",
    )

    health_path = "/api/v1/health"
    devices_path = "/api/v1/devices"
    config_suffix = "config"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[float] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self._access_token) and self._token_expires_at is not None and time.time() < self._token_expires_at

    def _authenticate(self) -> None:
        if self.config.auth_type == AuthType.CERTIFICATE.value:
            self._access_token = CERTIFICATE_TOKEN
            self._token_expires_at = time.time() + TOKEN_TTL_SECONDS
            return

        data = self.http.request(
            "POST",
            self.url("/api/v1/auth/token"),
            headers={"Accept": "application/json"},
            json={"apiKey": self.credential("api_key"), "clientId": self.credential("client_id")},
            retry_auth=False,
        )
        token = data.get("access_token") if isinstance(data, Mapping) else None
        if not token:
            raise AuthenticationError("Canon token response did not include an access_token")
        self._access_token = token
        self._token_expires_at = time.time() + float(data.get("expires_in") or 3600)

    def _clear_auth(self) -> None:
        self._access_token = None
        self._token_expires_at = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "X-Canon-API-Version": self.config.api_version or "1.0",
        }
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        if self.config.auth_type == AuthType.API_KEY.value and self.credential("api_key"):
            headers["X-API-Key"] = self.credential("api_key")
        return headers

    def device_path(self, device_id: str) -> str:
        return f"{self.devices_path}/{device_id}"

    def parse_device(self, item: Mapping[str, Any]) -> Optional[DeviceInfo]:
        device_id = item.get("device_id") or item.get("id")
        if not device_id:
            return None
        return DeviceInfo(
            device_id=str(device_id),
            serial_number=item.get("serial_number"),
            model_number=item.get("model") or item.get("model_name"),
            device_name=item.get("name") or item.get("device_name"),
            ip_address=item.get("ip_address"),
            mac_address=item.get("mac_address"),
            location=item.get("location"),
            capabilities=list(item.get("capabilities") or self.default_capabilities),
            supported_metrics=list(self.supported_metrics),
            status=map_device_status(item.get("status") or item.get("state")),
        )

    def _fetch_metrics(self, device_id: str) -> Any:
        return self.http.request("GET", self.url(f"{self.device_path(device_id)}/meters"), headers=self.headers)

    def parse_metrics(self, payload: Mapping[str, Any]) -> List[MeterReading]:
        timestamp = measurement_time(payload)
        metrics = self.normalizer.map_known(payload.get("counters"), COUNTER_FIELDS, timestamp)
        metrics.extend(
            self.normalizer.map_numeric_dict(
                payload.get("supplies"),
                "toner_{key}_level",
                timestamp,
                name_template="{key} Toner Level",
            )
        )

        status = payload.get("status")
        if isinstance(status, Mapping):
            metrics.append(
                reading(
                    "device_status",
                    status.get("state") or "unknown",
                    timestamp,
                    metric_name="Device Status",
                    category=MetricCategory.STATUS,
                    raw=dict(status),
                )
            )
            errors = status.get("errors")
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
