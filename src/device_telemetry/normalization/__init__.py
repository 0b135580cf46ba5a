"""Canonical metric normalization."""
from device_telemetry.normalization.normalizer import (
    KnownField,
    MeterReading,
    MetricNormalizer,
    categorize_metric,
    is_valid_metric_value,
    map_fields,
    measurement_time,
    reading,
)

__all__ = [
    "KnownField",
    "MeterReading",
    "MetricNormalizer",
    "categorize_metric",
    "is_valid_metric_value",
    "map_fields",
    "measurement_time",
    "reading",
]
