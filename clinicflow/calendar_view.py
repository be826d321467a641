from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Mapping

ACTIVE = {"pending", "approved"}
INACTIVE = {"completed", "denied", "missed"}

# weeks start on Sunday
_CAL = calendar.Calendar(firstweekday=calendar.SUNDAY)


def as_date(value: date | str) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def month_grid(year: int, month: int) -> list[list[date]]:
    """Full weeks covering the month, days of the adjacent months included."""
    return _CAL.monthdatescalendar(year, month)


def appointments_for_date(appointments: Iterable[Mapping], day: date) -> list[Mapping]:
    """Active (pending/approved) appointments of the day."""
    return [a for a in appointments if as_date(a["appointment_date"]) == day and a["status"] in ACTIVE]


def inactive_appointments_for_date(appointments: Iterable[Mapping], day: date) -> list[Mapping]:
    return [a for a in appointments if as_date(a["appointment_date"]) == day and a["status"] in INACTIVE]


def intensity(count: int) -> int:
    """Shade level of a calendar cell: 0 empty, up to 4 for more than six appointments."""
    if count <= 0:
        return 0
    if count <= 2:
        return 1
    if count <= 4:
        return 2
    if count <= 6:
        return 3
    return 4


@dataclass(frozen=True)
class DayCell:
    day: date
    in_month: bool
    is_today: bool
    active: int
    inactive: int

    @property
    def intensity(self) -> int:
        return intensity(self.active)

    def as_dict(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "in_month": self.in_month,
            "is_today": self.is_today,
            "active": self.active,
            "inactive": self.inactive,
            "intensity": self.intensity,
        }


def month_density(
    appointments: Iterable[Mapping], year: int, month: int, today: date | None = None
) -> list[list[DayCell]]:
    today = today or date.today()

    active: dict[date, int] = {}
    inactive: dict[date, int] = {}
    for a in appointments:
        d = as_date(a["appointment_date"])
        if a["status"] in ACTIVE:
            active[d] = active.get(d, 0) + 1
        elif a["status"] in INACTIVE:
            inactive[d] = inactive.get(d, 0) + 1

    return [
        [
            DayCell(
                day=d,
                in_month=d.month == month,
                is_today=d == today,
                active=active.get(d, 0),
                inactive=inactive.get(d, 0),
            )
            for d in week
        ]
        for week in month_grid(year, month)
    ]
