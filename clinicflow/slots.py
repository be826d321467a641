"""
Booking slots for a doctor's day.

The day is split in three bands:
- morning  10:00-12:30, a slot every 15 minutes
- evening  17:00-18:45, a slot every 15 minutes
- night    19:00-20:00, a slot every 5 minutes, no booking limit

A slot covers the 15 minutes starting at its time: every appointment whose
time falls in that window counts against the slot. A time between grid slots
is checked against the slot whose window holds it (see ``slot_containing``).
Limited slots take at most ``DEFAULT_MAX_SLOTS`` appointments.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping

SLOT_WINDOW_MINUTES = 15
DEFAULT_MAX_SLOTS = 3
UNLIMITED_SLOTS = 999
UNLIMITED_FROM_HOUR = 19

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")

# statuses that do not hold a place in the slot
_RELEASED_STATUSES = {"denied"}


def parse_time(value: str) -> str:
    """Validate ``H:MM``/``HH:MM`` (seconds tolerated) and normalize it to ``HH:MM``."""
    m = _TIME_RE.match((value or "").strip())
    if not m:
        raise ValueError("Please select a time")
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time: {value}")
    return f"{hours:02d}:{minutes:02d}"


def to_minutes(value: str) -> int:
    hours, minutes = parse_time(value).split(":")
    return int(hours) * 60 + int(minutes)


def _fmt(total_minutes: int) -> str:
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def _band(start: str, end: str, step: int) -> list[str]:
    """Times from start to end, both included."""
    return [_fmt(m) for m in range(to_minutes(start), to_minutes(end) + 1, step)]


def morning_slots() -> list[str]:
    return _band("10:00", "12:30", 15)


def evening_slots() -> list[str]:
    return _band("17:00", "18:45", 15) + _band("19:00", "20:00", 5)


def generate_slots() -> list[str]:
    return morning_slots() + evening_slots()


def max_slots(slot: str) -> int:
    return UNLIMITED_SLOTS if to_minutes(slot) // 60 >= UNLIMITED_FROM_HOUR else DEFAULT_MAX_SLOTS


def format_time_label(value: str) -> str:
    """``"13:30"`` -> ``"1:30 PM"``."""
    hours, minutes = divmod(to_minutes(value), 60)
    hour = hours - 12 if hours > 12 else 12 if hours == 0 else hours
    period = "PM" if hours >= 12 else "AM"
    return f"{hour}:{minutes:02d} {period}"


def count_in_slot(times: Iterable[str], slot: str) -> int:
    start = to_minutes(slot)
    end = start + SLOT_WINDOW_MINUTES
    return sum(1 for t in times if start <= to_minutes(t) < end)


@dataclass(frozen=True)
class SlotAvailability:
    time: str
    count: int
    max_slots: int

    @property
    def is_unlimited(self) -> bool:
        return self.max_slots >= UNLIMITED_SLOTS

    @property
    def is_available(self) -> bool:
        return self.count < self.max_slots

    @property
    def fill_ratio(self) -> float:
        return self.count / self.max_slots

    @property
    def fill_level(self) -> str:
        if self.count >= self.max_slots and not self.is_unlimited:
            return "full"
        if self.fill_ratio >= 0.66:
            return "high"
        if self.fill_ratio >= 0.33:
            return "medium"
        return "low"

    @property
    def info(self) -> str:
        if self.is_unlimited:
            return f"{self.count} booked" if self.count > 0 else ""
        return f"{self.count}/{self.max_slots}"

    @property
    def label(self) -> str:
        return format_time_label(self.time)

    def as_dict(self) -> dict:
        return {
            "time": self.time,
            "label": self.label,
            "count": self.count,
            "max_slots": self.max_slots,
            "available": self.is_available,
            "fill_level": self.fill_level,
            "info": self.info,
        }


def _booked_times(appointments: Iterable[Mapping]) -> list[str]:
    return [a["appointment_time"] for a in appointments if a.get("status") not in _RELEASED_STATUSES]


def availability_for(appointments: Iterable[Mapping], slot: str) -> SlotAvailability:
    slot = parse_time(slot)
    return SlotAvailability(time=slot, count=count_in_slot(_booked_times(appointments), slot), max_slots=max_slots(slot))


def slot_availability(appointments: Iterable[Mapping], slots: Iterable[str] | None = None) -> dict[str, SlotAvailability]:
    """
    Availability of every slot of the grid for one doctor and one day.
    ``appointments`` are flat rows with ``appointment_time`` and ``status``.
    """
    times = _booked_times(appointments)
    out: dict[str, SlotAvailability] = {}
    for slot in slots if slots is not None else generate_slots():
        out[slot] = SlotAvailability(time=slot, count=count_in_slot(times, slot), max_slots=max_slots(slot))
    return out


def slot_containing(value: str) -> str:
    """
    The grid slot whose window holds ``value``: ``"10:05"`` -> ``"10:00"``.
    When windows overlap the latest one wins. Times outside the grid map to themselves.
    """
    t = to_minutes(value)
    found = parse_time(value)
    for slot in generate_slots():
        start = to_minutes(slot)
        if start <= t < start + SLOT_WINDOW_MINUTES:
            found = slot
    return found


def check_capacity(appointments: Iterable[Mapping], slot: str) -> SlotAvailability:
    """Raise ValueError when the grid slot holding ``slot`` has no room left."""
    availability = availability_for(appointments, slot_containing(slot))
    if not availability.is_available:
        raise ValueError(
            f"Slot {availability.label} is full ({availability.count}/{availability.max_slots})."
        )
    return availability
