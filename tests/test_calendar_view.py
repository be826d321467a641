"""Tests for the month calendar density."""

from datetime import date

import pytest

from clinicflow.calendar_view import (
    appointments_for_date,
    inactive_appointments_for_date,
    intensity,
    month_density,
    month_grid,
)

APPOINTMENTS = [
    {"appointment_date": "2025-03-10", "status": "pending"},
    {"appointment_date": "2025-03-10", "status": "approved"},
    {"appointment_date": "2025-03-10", "status": "completed"},
    {"appointment_date": "2025-03-10", "status": "denied"},
    {"appointment_date": "2025-03-11", "status": "missed"},
]


class TestMonthGrid:
    def test_weeks_start_on_sunday(self):
        weeks = month_grid(2025, 3)
        assert all(len(w) == 7 for w in weeks)
        assert weeks[0][0] == date(2025, 2, 23)
        assert weeks[0][0].weekday() == 6

    def test_covers_whole_month(self):
        days = [d for w in month_grid(2025, 3) for d in w]
        assert date(2025, 3, 1) in days
        assert date(2025, 3, 31) in days


class TestIntensity:
    @pytest.mark.parametrize("count,level", [(0, 0), (1, 1), (2, 1), (3, 2), (4, 2), (5, 3), (6, 3), (7, 4)])
    def test_thresholds(self, count, level):
        assert intensity(count) == level


class TestDayFilters:
    def test_active_only(self):
        rows = appointments_for_date(APPOINTMENTS, date(2025, 3, 10))
        assert {r["status"] for r in rows} == {"pending", "approved"}

    def test_inactive_only(self):
        rows = inactive_appointments_for_date(APPOINTMENTS, date(2025, 3, 10))
        assert {r["status"] for r in rows} == {"completed", "denied"}


class TestMonthDensity:
    def test_counts_per_day(self):
        weeks = month_density(APPOINTMENTS, 2025, 3, today=date(2025, 3, 11))
        cells = {c.day: c for w in weeks for c in w}

        assert cells[date(2025, 3, 10)].active == 2
        assert cells[date(2025, 3, 10)].inactive == 2
        assert cells[date(2025, 3, 10)].intensity == 1
        assert cells[date(2025, 3, 11)].is_today
        assert cells[date(2025, 3, 11)].active == 0
        assert not cells[date(2025, 2, 23)].in_month

    def test_as_dict(self):
        weeks = month_density([], 2025, 3, today=date(2025, 3, 1))
        d = weeks[0][6].as_dict()
        assert d == {
            "date": "2025-03-01",
            "in_month": True,
            "is_today": True,
            "active": 0,
            "inactive": 0,
            "intensity": 0,
        }
