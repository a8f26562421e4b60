from datetime import date

import pytest
from household_planner.errors import BadRequest
from household_planner.weeks import (
    current_monday,
    get_day_index,
    history_window,
    normalize_to_monday,
    parse_date,
    weeks_between,
)


class TestNormalizeToMonday:
    def test_monday_unchanged(self):
        assert normalize_to_monday("2024-06-10") == date(2024, 6, 10)

    def test_midweek(self):
        assert normalize_to_monday("2024-06-13") == date(2024, 6, 10)

    def test_sunday_goes_back_six_days(self):
        assert normalize_to_monday("2024-06-16") == date(2024, 6, 10)

    def test_accepts_date(self):
        assert normalize_to_monday(date(2024, 6, 15)) == date(2024, 6, 10)

    def test_current_monday(self):
        assert current_monday(date(2024, 6, 12)) == date(2024, 6, 10)


class TestParseDate:
    def test_invalid_format(self):
        with pytest.raises(BadRequest, match="YYYY-MM-DD"):
            parse_date("10/06/2024")

    def test_not_a_date(self):
        with pytest.raises(BadRequest):
            parse_date("2024-02-30")


class TestHistory:
    def test_window_excludes_target_week(self):
        start, end = history_window(date(2024, 6, 10), 4)
        assert start == date(2024, 5, 13)
        assert end == date(2024, 6, 3)

    def test_weeks_between(self):
        assert weeks_between(date(2024, 6, 10), date(2024, 6, 3)) == 1
        assert weeks_between(date(2024, 6, 10), date(2024, 5, 13)) == 4


class TestDayIndex:
    def test_names(self):
        assert get_day_index("Monday") == 0
        assert get_day_index("sunday") == 6

    def test_unknown(self):
        assert get_day_index("funday") == -1
