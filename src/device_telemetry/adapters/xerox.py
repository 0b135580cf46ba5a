"""Xerox ConnectKey adapter.

OAuth2 uses the client_credentials grant against /oauth/token; API key
auth sends the key itself as X-API-Key. Meter counters and supplies are
separate endpoints and are merged into one payload before parsing.
"""
from __future__ import annotations

import time
from typing import Any, Dict, List, Mapping, Optional

from device_telemetry.adapters.base import DeviceInfo, VendorAdapter, map_device_status
from device_telemetry.db.models import AuthType, MetricCategory, Vendor
from device_telemetry.errors import AuthenticationError
from device_telemetry.normalization.normalizer import KnownField, MeterReading, measurement_time

OAUTH_SCOPE = "device:read meter:read"
API_KEY_TTL_SECONDS = 24 * 60 * 60

METER_FIELDS: Dict[str, KnownField] = {
    "totalImpressions": KnownField("total_impressions", "Total Impressions", "impressions", MetricCategory.USAGE),
    "blackImpressions": KnownField("black_impressions", "Black Impressions", "impressions", MetricCategory.USAGE),
    "colorImpressions": KnownField("color_impressions", "Color Impressions", "impressions", MetricCategory.USAGE),
    "scanImpressions": KnownField("scan_impressions", "Scan Impressions", "impressions", MetricCategory.USAGE),
    "faxImpressions": KnownField("fax_impressions", "Fax Impressions", "impressions", MetricCategory.USAGE),
    "duplexImpressions": KnownField("duplex_impressions", "Duplex Impressions", "impressions", MetricCategory.USAGE),
    "simplexImpressions": KnownField("simplex_impressions", "Simplex Impressions", "impressions", MetricCategory.USAGE),
}


class XeroxAdapter(VendorAdapter):
    vendor = Vendor.XEROX.value
    platform_name = "Xerox ConnectKey"
    supported_auth_types = (AuthType.OAUTH2.value, AuthType.API_KEY.value)
    required_credentials = {
        AuthType.OAUTH2.value: ("client_id", "client_secret"),
        AuthType.API_KEY.value: ("api_key",),
    }
    default_capabilities = ("meter_reading", "status_monitoring", "supply_monitoring")
    supported_metrics = (
        "total_impressions", "black_impressions", "color_impressions",
        "scan_impressions", "fax_impressions", "duplex_impressions", "simplex_impressions",
        "toner_black_level", "toner_cyan_level", "toner_magenta_level", "toner_yellow_level",
    )

    health_path = "/v1/health"
    devices_path = "/v1/devices"
    config_suffix = "configuration"

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
            self._token_expires_at = time.time() + API_KEY_TTL_SECONDS
            return

        data = self.http.request(
            "POST",
            self.url("/oauth/token"),
            headers={"Accept": "application/json"},
            data={
                "grant_type": "client_credentials",
                "client_id": self.credential("client_id"),
                "client_secret": self.credential("client_secret"),
                "scope": self.credential("scope") or OAUTH_SCOPE,
            },
            retry_auth=False,
        )
        token = data.get("access_token") if isinstance(data, Mapping) else None
        if not token:
            raise AuthenticationError("Xerox OAuth response did not include an access_token")
        self._access_token = token
        self._token_expires_at = time.time() + float(data.get("expires_in") or 3600)

    def _clear_auth(self) -> None:
        self._access_token = None
        self._token_expires_at = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "X-Xerox-API-Version": self.config.api_version or "1.0",
        }
        if self._access_token:
            if self.config.auth_type == AuthType.OAUTH2.value:
                headers["Authorization"] = f"Bearer {self._access_token}"
            else:
                headers["X-API-Key"] = self._access_token
        return headers

    def device_path(self, device_id: str) -> str:
        return f"{self.devices_path}/{device_id}"

    def parse_device(self, item: Mapping[str, Any]) -> Optional[DeviceInfo]:
        device_id = item.get("deviceId") or item.get("id") or item.get("serialNumber")
        if not device_id:
            return None
        return DeviceInfo(
            device_id=str(device_id),
            serial_number=item.get("serialNumber"),
            model_number=item.get("model") or item.get("modelName"),
            device_name=item.get("name") or item.get("displayName"),
            ip_address=item.get("ipAddress") or item.get("networkAddress"),
            mac_address=item.get("macAddress"),
            location=item.get("location"),
            capabilities=list(item.get("capabilities") or self.default_capabilities),
            supported_metrics=list(self.supported_metrics),
            status=map_device_status(item.get("status") or item.get("state")),
        )

    def _fetch_metrics(self, device_id: str) -> Any:
        meters = self.http.request("GET", self.url(f"{self.device_path(device_id)}/meters"), headers=self.headers)
        supplies = self.http.request("GET", self.url(f"{self.device_path(device_id)}/supplies"), headers=self.headers)
        if not isinstance(meters, Mapping) or not isinstance(supplies, Mapping):
            return None
        return {"meters": meters, "supplies": supplies}

    def parse_metrics(self, payload: Mapping[str, Any]) -> List[MeterReading]:
        meter_data = payload.get("meters") or {}
        supply_data = payload.get("supplies") or {}
        metrics: List[MeterReading] = []

        if isinstance(meter_data, Mapping):
            timestamp = measurement_time(meter_data)
            counters = meter_data.get("meters") or meter_data.get("counters")
            metrics.extend(self.normalizer.map_known(counters, METER_FIELDS, timestamp))

        if isinstance(supply_data, Mapping):
            timestamp = measurement_time(supply_data)
            entries = supply_data.get("supplies") or supply_data.get("consumables")
            if isinstance(entries, list):
                metrics.extend(
                    self.normalizer.map_levels(
                        [e for e in entries if isinstance(e, Mapping) and e.get("type")],
                        timestamp,
                    )
                )
            metrics.extend(self.normalizer.map_numeric_dict(supply_data.get("toner"), "toner_{key}_level", timestamp))
        return metrics

    def status_from_payload(self, payload: Mapping[str, Any]) -> Optional[str]:
        meter_data = payload.get("meters")
        if isinstance(meter_data, Mapping) and meter_data.get("status") is not None:
            state = meter_data["status"]
            return map_device_status(state.get("state") if isinstance(state, Mapping) else state)
        return None
