"""HP PrintOS adapter.

PrintOS authenticates with an HMAC-SHA256 signed login request and
returns a session ID that is sent on every later call as X-HP-Session-ID.
"""
from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any, Dict, List, Mapping, Optional

from device_telemetry.adapters.base import DeviceInfo, VendorAdapter, map_device_status
from device_telemetry.db.models import AuthType, MetricCategory, Vendor
from device_telemetry.errors import AuthenticationError
from device_telemetry.normalization.normalizer import KnownField, MeterReading, measurement_time, reading
from device_telemetry.utils import utc_now

LOGIN_PATH = "/api/v1/auth/login"
SESSION_TTL_SECONDS = 24 * 60 * 60

USAGE_FIELDS: Dict[str, KnownField] = {
    "totalPagesPrinted": KnownField("total_pages_printed", "Total Pages Printed", "pages", MetricCategory.USAGE),
    "blackPagesPrinted": KnownField("black_pages_printed", "Black Pages Printed", "pages", MetricCategory.USAGE),
    "colorPagesPrinted": KnownField("color_pages_printed", "Color Pages Printed", "pages", MetricCategory.USAGE),
    "totalPagesCopied": KnownField("total_pages_copied", "Total Pages Copied", "pages", MetricCategory.USAGE),
    "totalPagesScanned": KnownField("total_pages_scanned", "Total Pages Scanned", "pages", MetricCategory.USAGE),
}


def sign_login(api_secret: str, timestamp: str, method: str = "POST", path: str = LOGIN_PATH) -> str:
    """Hex HMAC-SHA256 over "METHOD\\nPATH\\nTIMESTAMP"."""
    message = f"{method}\n{path}\n{timestamp}"
    return hmac.new(api_secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


class HPAdapter(VendorAdapter):
    vendor = Vendor.HP.value
    platform_name = "HP PrintOS"
    supported_auth_types = (AuthType.API_KEY.value,)
    required_credentials = {AuthType.API_KEY.value: ("api_key", "api_secret")}
    default_capabilities = ("meter_reading", "status_monitoring", "supply_monitoring")
    supported_metrics = (
        "total_pages_printed", "black_pages_printed", "color_pages_printed",
        "total_pages_copied", "total_pages_scanned",
        "black_cartridge_level", "cyan_cartridge_level", "magenta_cartridge_level", "yellow_cartridge_level",
        "device_status", "device_errors", "device_warnings",
    )

    health_path = "/api/v1/status"
    devices_path = "/api/v1/devices"
    config_suffix = "configuration"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._session_id: Optional[str] = None
        self._session_expires_at: Optional[float] = None
        self._hmac_headers: Dict[str, str] = {}

    @property
    def is_authenticated(self) -> bool:
        return bool(self._session_id) and self._session_expires_at is not None and time.time() < self._session_expires_at

    def _signed_headers(self) -> Dict[str, str]:
        timestamp = utc_now().isoformat(timespec="milliseconds") + "Z"
        signature = sign_login(self.credential("api_secret"), timestamp)
        return {
            "x-hp-hmac-authentication": f"{self.credential('api_key')}:{signature}",
            "x-hp-hmac-date": timestamp,
        }

    def _authenticate(self) -> None:
        signed = self._signed_headers()
        data = self.http.request(
            "POST",
            self.url(LOGIN_PATH),
            headers=signed,
            json={"deviceType": self.credential("device_type") or "printer"},
            retry_auth=False,
        )
        session_id = data.get("sessionId") if isinstance(data, Mapping) else None
        if not session_id:
            raise AuthenticationError("HP PrintOS login response did not include a sessionId")
        self._session_id = session_id
        self._session_expires_at = time.time() + SESSION_TTL_SECONDS
        self._hmac_headers = signed

    def _clear_auth(self) -> None:
        self._session_id = None
        self._session_expires_at = None
        self._hmac_headers = {}

    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._session_id:
            headers["X-HP-Session-ID"] = self._session_id
            headers.update(self._hmac_headers)
        return headers

    def device_path(self, device_id: str) -> str:
        return f"{self.devices_path}/{device_id}"

    def parse_device(self, item: Mapping[str, Any]) -> Optional[DeviceInfo]:
        device_id = item.get("deviceId") or item.get("id")
        if not device_id:
            return None
        return DeviceInfo(
            device_id=str(device_id),
            serial_number=item.get("serialNumber"),
            model_number=item.get("model") or item.get("modelName"),
            device_name=item.get("name") or item.get("hostname"),
            ip_address=item.get("ipAddress"),
            mac_address=item.get("macAddress"),
            location=item.get("location"),
            capabilities=list(item.get("capabilities") or self.default_capabilities),
            supported_metrics=list(self.supported_metrics),
            status=map_device_status(item.get("status") or item.get("state")),
        )

    def _fetch_metrics(self, device_id: str) -> Any:
        return self.http.request(
            "POST",
            self.url(f"{self.device_path(device_id)}/statistics"),
            headers=self.headers,
            json={"statisticsType": "usage_and_supplies"},
        )

    def parse_metrics(self, payload: Mapping[str, Any]) -> List[MeterReading]:
        timestamp = measurement_time(payload)
        metrics = self.normalizer.map_known(payload.get("usage"), USAGE_FIELDS, timestamp)

        supplies = payload.get("supplies")
        if isinstance(supplies, list):
            metrics.extend(
                self.normalizer.map_levels(
                    [s for s in supplies if isinstance(s, Mapping) and s.get("type")],
                    timestamp,
                )
            )

        cartridges = payload.get("cartridges")
        if isinstance(cartridges, Mapping):
            for color, info in cartridges.items():
                if not isinstance(info, Mapping):
                    continue
                metric = reading(
                    f"{color}_cartridge_level".lower(),
                    info.get("level"),
                    timestamp,
                    metric_name=f"{str(color).title()} Cartridge Level",
                    unit=info.get("unit") or "percent",
                    category=MetricCategory.SUPPLY,
                    raw={color: dict(info)},
                )
                if metric is not None:
                    metrics.append(metric)

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
            for key, metric_type, name in (
                ("errors", "device_errors", "Device Errors"),
                ("warnings", "device_warnings", "Device Warnings"),
            ):
                if status.get(key):
                    metrics.append(
                        reading(
                            metric_type,
                            status[key],
                            timestamp,
                            metric_name=name,
                            category=MetricCategory.ERROR,
                            raw={key: status[key]},
                            as_json=True,
                        )
                    )

        trays = payload.get("paperTrays")
        if isinstance(trays, list):
            for index, tray in enumerate(trays, start=1):
                if not isinstance(tray, Mapping):
                    continue
                metric = reading(
                    f"paper_tray_{index}_level",
                    tray.get("level"),
                    timestamp,
                    metric_name=f"Paper Tray {index} Level",
                    unit=tray.get("unit") or "percent",
                    category=MetricCategory.SUPPLY,
                    raw=dict(tray),
                )
                if metric is not None:
                    metrics.append(metric)

        return [m for m in metrics if m is not None]
