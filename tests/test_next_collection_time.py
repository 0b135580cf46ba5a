"""Tests for collection scheduling arithmetic."""
from datetime import datetime, timedelta

import pytest

from device_telemetry.db.models import CollectionFrequency
from device_telemetry.services.integration_registry import add_months, calculate_next_collection_time
from device_telemetry.utils import utc_now


class TestCalculateNextCollectionTime:
    @pytest.mark.parametrize(
        "frequency, from_time, expected",
        [
            ("real_time", datetime(2024, 1, 1, 12, 0), datetime(2024, 1, 1, 12, 1)),
            ("hourly", datetime(2024, 1, 1, 23, 30), datetime(2024, 1, 2, 0, 30)),
            ("daily", datetime(2024, 1, 1), datetime(2024, 1, 2)),
            ("weekly", datetime(2024, 12, 28), datetime(2025, 1, 4)),
            ("monthly", datetime(2024, 1, 15), datetime(2024, 2, 15)),
            ("monthly", datetime(2024, 1, 31), datetime(2024, 2, 29)),
            ("monthly", datetime(2023, 1, 31), datetime(2023, 2, 28)),
            ("monthly", datetime(2024, 12, 31, 8, 0), datetime(2025, 1, 31, 8, 0)),
            ("on_demand", datetime(2024, 1, 1), datetime(2024, 1, 2)),
            ("fortnightly", datetime(2024, 1, 1), datetime(2024, 1, 2)),
            (None, datetime(2024, 1, 1), datetime(2024, 1, 2)),
        ],
    )
    def test_table(self, frequency, from_time, expected):
        assert calculate_next_collection_time(frequency, from_time) == expected

    def test_accepts_enum(self):
        assert calculate_next_collection_time(CollectionFrequency.HOURLY, datetime(2024, 1, 1)) == datetime(2024, 1, 1, 1)

    @pytest.mark.parametrize("frequency", [f.value for f in CollectionFrequency])
    def test_strictly_later(self, frequency):
        anchor = datetime(2024, 1, 31, 23, 59)
        assert calculate_next_collection_time(frequency, anchor) > anchor

    def test_defaults_to_now(self):
        before = utc_now()
        result = calculate_next_collection_time("hourly")
        assert before + timedelta(hours=1) <= result <= utc_now() + timedelta(hours=1)


class TestAddMonths:
    def test_year_rollover(self):
        assert add_months(datetime(2024, 11, 30), 3) == datetime(2025, 2, 28)

    def test_keeps_time_of_day(self):
        assert add_months(datetime(2024, 3, 31, 6, 45), 1) == datetime(2024, 4, 30, 6, 45)
