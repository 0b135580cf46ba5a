"""Tests for vendor payload normalization."""
from datetime import datetime, timedelta

import pytest

from device_telemetry.db.models import MetricCategory
from device_telemetry.normalization.normalizer import (
    MAX_METRIC_NAME_LENGTH,
    MAX_METRIC_TYPE_LENGTH,
    KnownField,
    MetricNormalizer,
    categorize_metric,
    map_fields,
    measurement_time,
    reading,
    to_snake_case,
)
from device_telemetry.utils import utc_now


class TestCategorizeMetric:
    @pytest.mark.parametrize(
        "metric_type, expected",
        [
            ("total_prints", "usage"),
            ("total_scans", "usage"),
            ("toner_black_level", "supply"),
            ("paper_level", "supply"),
            ("drum_life_remaining", "maintenance"),
            ("device_jam_error", "error"),
            ("device_status", "status"),
            ("device_uptime", "status"),
        ],
    )
    def test_keyword_categories(self, metric_type, expected):
        assert categorize_metric(metric_type) == expected

    def test_usage_keywords_win_over_later_groups(self):
        # "count" (usage) is checked before "jam" (error)
        assert categorize_metric("paper_jam_count") == "usage"

    def test_case_insensitive(self):
        assert categorize_metric("TonerCyanLevel") == "supply"


class TestReading:
    def test_numeric_slot(self):
        metric = reading("total_prints", 100)
        assert metric.numeric_value == 100.0
        assert metric.string_value is None
        assert metric.metric_category == "usage"
        assert metric.metric_name == "Total Prints"

    def test_zero_is_valid(self):
        assert reading("total_prints", 0).numeric_value == 0.0

    def test_bool_goes_to_boolean_slot(self):
        metric = reading("duplex_enabled", True)
        assert metric.boolean_value is True
        assert metric.numeric_value is None

    def test_string_slot(self):
        assert reading("device_status", "ready").string_value == "ready"

    def test_structured_values_use_json_slot(self):
        assert reading("device_errors", ["paper jam"]).json_value == ["paper jam"]
        assert reading("tray_levels", (10, 20)).json_value == [10, 20]

    def test_as_json_forces_json_slot(self):
        metric = reading("device_errors", "jam", as_json=True)
        assert metric.json_value == "jam"
        assert metric.string_value is None

    def test_other_types_are_stringified(self):
        metric = reading("firmware", datetime(2024, 1, 1))
        assert metric.string_value == "2024-01-01 00:00:00"

    @pytest.mark.parametrize("value", [None, ""])
    def test_invalid_values_are_skipped(self, value):
        assert reading("total_prints", value) is None

    def test_explicit_category_and_unit(self):
        metric = reading("odd_name", 5, unit="pages", category=MetricCategory.MAINTENANCE)
        assert metric.metric_category == "maintenance"
        assert metric.unit == "pages"

    def test_raw_data_defaults_to_value(self):
        assert reading("total_prints", 7).raw_data == {"total_prints": 7}

    def test_value_property(self):
        assert reading("device_status", "idle").value == "idle"
        assert reading("duplex_enabled", False).value is False


class TestMapFields:
    def test_mapping_renames_and_skips_invalid(self):
        metrics = map_fields(
            {"impressions": 10, "empty": "", "missing": None},
            {"impressions": "total_prints"},
        )
        assert len(metrics) == 1
        assert metrics[0].metric_type == "total_prints"
        assert metrics[0].metric_category == "usage"
        assert metrics[0].raw_data == {"impressions": 10}

    def test_unmapped_key_kept_as_is(self):
        metrics = map_fields({"uptimeHours": 12})
        assert metrics[0].metric_type == "uptimeHours"

    def test_non_mapping_payload(self):
        assert map_fields(["not", "a", "dict"]) == []

    def test_timestamp_applied(self):
        ts = datetime(2024, 3, 1, 10, 0)
        metrics = map_fields({"total_prints": 1}, timestamp=ts)
        assert metrics[0].measurement_timestamp == ts


class TestMetricNormalizer:
    TABLE = {"a": KnownField("total_a_pages", "A Pages", "pages", MetricCategory.USAGE)}

    def test_map_known_with_fallback(self):
        normalizer = MetricNormalizer({"tonerCyan": "toner_cyan_level"})
        metrics = normalizer.map_known({"a": 5, "tonerCyan": 40}, self.TABLE)
        by_type = {m.metric_type: m for m in metrics}
        assert set(by_type) == {"total_a_pages", "toner_cyan_level"}
        assert by_type["total_a_pages"].unit == "pages"
        assert by_type["total_a_pages"].metric_name == "A Pages"
        assert by_type["toner_cyan_level"].metric_category == "supply"

    def test_map_known_without_fallback(self):
        metrics = MetricNormalizer().map_known({"a": 5, "other": 1}, self.TABLE, fallback=False)
        assert [m.metric_type for m in metrics] == ["total_a_pages"]

    def test_map_known_ignores_non_mapping(self):
        assert MetricNormalizer().map_known(None, self.TABLE) == []

    def test_map_levels(self):
        metrics = MetricNormalizer().map_levels(
            [
                {"color": "Black", "level": 80},
                {"color": "Light Cyan", "level": 55},
                {"type": "waste", "level": "n/a"},
                {"level": 10},
                "garbage",
            ]
        )
        assert [(m.metric_type, m.numeric_value) for m in metrics] == [
            ("black_level", 80.0),
            ("light_cyan_level", 55.0),
        ]
        assert metrics[0].metric_name == "Black Level"
        assert metrics[0].unit == "percent"
        assert all(m.metric_category == "supply" for m in metrics)

    def test_map_numeric_dict(self):
        metrics = MetricNormalizer().map_numeric_dict(
            {"black": 80, "cyan": True, "magenta": "x"},
            "toner_{key}_level",
            name_template="{key} Toner Level",
        )
        assert len(metrics) == 1
        assert metrics[0].metric_type == "toner_black_level"
        assert metrics[0].metric_name == "Black Toner Level"

    def test_long_vendor_keys_fit_the_store(self):
        key = "cartridge" * 20
        (numeric,) = MetricNormalizer().map_numeric_dict({key: 40}, "toner_{key}_level", name_template="{key}" * 3)
        (generic,) = map_fields({key * 2: 1})

        for metric in (numeric, generic):
            assert len(metric.metric_type) == MAX_METRIC_TYPE_LENGTH == 100
            assert len(metric.metric_name) <= MAX_METRIC_NAME_LENGTH
        assert numeric.metric_type.startswith("toner_cartridgecartridge")
        assert numeric.raw_data == {key: 40}


class TestHelpers:
    @pytest.mark.parametrize(
        "raw, expected",
        [("totalImpressions", "total_impressions"), ("Light Cyan", "light_cyan"), ("bw-prints", "bw_prints")],
    )
    def test_to_snake_case(self, raw, expected):
        assert to_snake_case(raw) == expected

    def test_measurement_time_iso(self):
        assert measurement_time({"timestamp": "2024-03-01T10:00:00Z"}) == datetime(2024, 3, 1, 10, 0)

    def test_measurement_time_epoch_seconds_and_millis(self):
        expected = datetime(2024, 3, 1, 10, 0)
        assert measurement_time({"reading_date": 1709287200}) == expected
        assert measurement_time({"reading_date": 1709287200000}) == expected

    def test_measurement_time_defaults_to_now(self):
        assert abs(measurement_time({"timestamp": "garbage"}) - utc_now()) < timedelta(seconds=5)
