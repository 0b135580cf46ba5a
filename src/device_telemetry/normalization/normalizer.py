"""Vendor payload to canonical metric conversion.

Adapters map the fields they know through explicit tables
(:class:`KnownField`) and hand anything else to the generic mapper, which
renames the key through the integration's field mappings, picks the value
slot from the runtime type and categorizes the metric by keyword.

None of the functions here raise on unexpected payload shapes; fields
that cannot be interpreted are skipped.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple

from device_telemetry.db.models import DeviceMetric, MetricCategory
from device_telemetry.utils import parse_timestamp, utc_now

# Checked in order; the first group with a matching token wins.
CATEGORY_KEYWORDS: Tuple[Tuple[MetricCategory, Tuple[str, ...]], ...] = (
    (MetricCategory.USAGE, ("print", "copy", "scan", "page", "count")),
    (MetricCategory.SUPPLY, ("toner", "ink", "paper", "supply", "level")),
    (MetricCategory.MAINTENANCE, ("maintenance", "clean", "service", "drum")),
    (MetricCategory.ERROR, ("error", "jam", "fault", "warning")),
)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_WORD = re.compile(r"[^0-9a-zA-Z]+")

# Vendor keys longer than the store's columns are cut to fit
MAX_METRIC_TYPE_LENGTH = DeviceMetric.__table__.c.metric_type.type.length
MAX_METRIC_NAME_LENGTH = DeviceMetric.__table__.c.metric_name.type.length


@dataclass
class MeterReading:
    """One normalized observation, before it is persisted.

    Exactly one of the four value slots is set.
    """
    metric_type: str
    metric_name: str
    metric_category: str
    measurement_timestamp: datetime
    numeric_value: Optional[float] = None
    string_value: Optional[str] = None
    boolean_value: Optional[bool] = None
    json_value: Any = None
    unit: Optional[str] = None
    raw_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def value(self) -> Any:
        for candidate in (self.numeric_value, self.string_value, self.boolean_value, self.json_value):
            if candidate is not None:
                return candidate
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_type": self.metric_type,
            "metric_name": self.metric_name,
            "metric_category": self.metric_category,
            "value": self.value,
            "unit": self.unit,
            "measurement_timestamp": self.measurement_timestamp.isoformat(),
        }


class KnownField(NamedTuple):
    """Explicit mapping for a vendor field."""
    metric_type: str
    metric_name: str
    unit: Optional[str] = None
    category: Optional[MetricCategory] = None


def categorize_metric(metric_type: str) -> str:
    """Categorize a metric by keywords in its (mapped) name.

    >>> categorize_metric("total_prints")
    'usage'
    >>> categorize_metric("toner_black_level")
    'supply'
    """
    lowered = metric_type.lower()
    for category, tokens in CATEGORY_KEYWORDS:
        if any(token in lowered for token in tokens):
            return category.value
    return MetricCategory.STATUS.value


def is_valid_metric_value(value: Any) -> bool:
    return value is not None and value != ""


def to_snake_case(key: str) -> str:
    """totalImpressions -> total_impressions, 'Light Cyan' -> light_cyan."""
    key = _CAMEL_BOUNDARY.sub("_", key.strip())
    return _NON_WORD.sub("_", key).strip("_").lower()


def humanize(metric_type: str) -> str:
    return metric_type.replace("_", " ").strip().title()


def reading(
    metric_type: str,
    value: Any,
    timestamp: Optional[datetime] = None,
    metric_name: Optional[str] = None,
    unit: Optional[str] = None,
    category: Optional[MetricCategory | str] = None,
    raw: Optional[Dict[str, Any]] = None,
    as_json: bool = False,
) -> Optional[MeterReading]:
    """Build a MeterReading, choosing the value slot from the value's type.

    Returns None for invalid values (None or empty string). Type and name
    are cut to the metric store's column widths.

    Args:
        metric_type: Canonical metric type
        value: Raw value
        timestamp: Vendor measurement time, defaults to now
        metric_name: Display name, defaults to a humanized metric_type
        unit: Unit of measure
        category: Explicit category; keyword heuristic when omitted
        raw: Raw payload fragment kept for replay
        as_json: Store the value in the structured slot regardless of type
    """
    if not is_valid_metric_value(value):
        return None

    if isinstance(category, MetricCategory):
        category = category.value

    metric_type = metric_type[:MAX_METRIC_TYPE_LENGTH]
    result = MeterReading(
        metric_type=metric_type,
        metric_name=(metric_name or humanize(metric_type))[:MAX_METRIC_NAME_LENGTH],
        metric_category=category or categorize_metric(metric_type),
        measurement_timestamp=timestamp or utc_now(),
        unit=unit,
        raw_data=raw if raw is not None else {metric_type: value},
    )

    # bool is a subclass of int, so it has to be checked first
    if as_json or isinstance(value, (dict, list, tuple)):
        result.json_value = list(value) if isinstance(value, tuple) else value
    elif isinstance(value, bool):
        result.boolean_value = value
    elif isinstance(value, (int, float)):
        result.numeric_value = float(value)
    elif isinstance(value, str):
        result.string_value = value
    else:
        result.string_value = str(value)
    return result


def map_fields(
    raw: Mapping[str, Any],
    field_mappings: Optional[Mapping[str, str]] = None,
    timestamp: Optional[datetime] = None,
) -> List[MeterReading]:
    """Generic mapper for fields no adapter table knows about.

    Args:
        raw: Flat vendor payload section
        field_mappings: Rename table raw_key -> canonical metric type
        timestamp: Measurement time for every reading

    Returns:
        One reading per valid field
    """
    if not isinstance(raw, Mapping):
        return []
    mappings = field_mappings or {}
    metrics: List[MeterReading] = []
    for key, value in raw.items():
        mapped = mappings.get(key) or str(key)
        metric = reading(mapped, value, timestamp, metric_name=mapped, raw={key: value})
        if metric is not None:
            metrics.append(metric)
    return metrics


class MetricNormalizer:
    """Per-integration normalizer holding the integration's field mappings.

    Example:
        normalizer = MetricNormalizer(config.field_mappings)
        metrics = normalizer.map_known(payload["counters"], CANON_COUNTERS, ts)
    """

    def __init__(self, field_mappings: Optional[Mapping[str, str]] = None):
        self.field_mappings = dict(field_mappings or {})

    def map_known(
        self,
        section: Any,
        table: Mapping[str, KnownField],
        timestamp: Optional[datetime] = None,
        fallback: bool = True,
    ) -> List[MeterReading]:
        """Map a payload section through an explicit vendor table.

        Keys missing from the table go through the generic mapper when
        ``fallback`` is set, otherwise they are skipped.
        """
        if not isinstance(section, Mapping):
            return []
        metrics: List[MeterReading] = []
        leftovers: Dict[str, Any] = {}
        for key, value in section.items():
            known = table.get(key)
            if known is None:
                leftovers[key] = value
                continue
            metric = reading(
                known.metric_type,
                value,
                timestamp,
                metric_name=known.metric_name,
                unit=known.unit,
                category=known.category,
                raw={key: value},
            )
            if metric is not None:
                metrics.append(metric)
        if fallback and leftovers:
            metrics.extend(self.map_generic(leftovers, timestamp))
        return metrics

    def map_generic(self, raw: Any, timestamp: Optional[datetime] = None) -> List[MeterReading]:
        return map_fields(raw, self.field_mappings, timestamp)

    def map_levels(
        self,
        entries: Any,
        timestamp: Optional[datetime] = None,
        name_keys: Iterable[str] = ("color", "type"),
        value_key: str = "level",
        suffix: str = "_level",
        prefix: str = "",
        category: MetricCategory = MetricCategory.SUPPLY,
    ) -> List[MeterReading]:
        """Turn a list of supply entries into level readings.

        ``[{"color": "Black", "level": 80}]`` becomes ``black_level = 80``.
        Entries without a name or a numeric level are skipped.
        """
        if not isinstance(entries, list):
            return []
        name_keys = tuple(name_keys)
        metrics: List[MeterReading] = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            name = next((entry[k] for k in name_keys if is_valid_metric_value(entry.get(k))), None)
            level = entry.get(value_key)
            if name is None or isinstance(level, bool) or not isinstance(level, (int, float)):
                continue
            metric_type = f"{prefix}{to_snake_case(str(name))}{suffix}"
            metric = reading(
                metric_type,
                level,
                timestamp,
                metric_name=f"{str(name).strip()} Level",
                unit="percent",
                category=category,
                raw=dict(entry),
            )
            if metric is not None:
                metrics.append(metric)
        return metrics

    def map_numeric_dict(
        self,
        section: Any,
        template: str,
        timestamp: Optional[datetime] = None,
        unit: Optional[str] = "percent",
        category: MetricCategory = MetricCategory.SUPPLY,
        name_template: Optional[str] = None,
    ) -> List[MeterReading]:
        """Map ``{"black": 80, "cyan": 55}`` style dicts with a type template.

        Example:
            map_numeric_dict(supplies, "toner_{key}_level") -> toner_black_level, ...
        """
        if not isinstance(section, Mapping):
            return []
        metrics: List[MeterReading] = []
        for key, value in section.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            slug = to_snake_case(str(key))
            metric_type = template.format(key=slug)
            metric = reading(
                metric_type,
                value,
                timestamp,
                metric_name=name_template.format(key=str(key).title()) if name_template else None,
                unit=unit,
                category=category,
                raw={key: value},
            )
            if metric is not None:
                metrics.append(metric)
        return metrics


def measurement_time(payload: Any, keys: Iterable[str] = ("timestamp", "reading_date", "measuredAt", "lastUpdated")) -> datetime:
    """Vendor-reported measurement time from a payload, or now."""
    if isinstance(payload, Mapping):
        for key in keys:
            parsed = parse_timestamp(payload.get(key))
            if parsed is not None:
                return parsed
    return utc_now()
