from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, NamedTuple

from app.bookings.lifecycle import is_live_status


class Slot(NamedTuple):
    start: datetime
    end: datetime


def intervals_overlap(
    start: datetime,
    end: datetime,
    other_start: datetime,
    other_end: datetime,
) -> bool:
    # Half-open [start, end): back-to-back intervals do not overlap.
    return start < other_end and end > other_start


def find_conflicting_booking(
    start: datetime,
    end: datetime,
    bookings: Iterable[Any],
) -> Any | None:
    candidate_start = _ensure_aware(start)
    candidate_end = _ensure_aware(end)
    for booking in bookings:
        if not is_live_status(getattr(booking, "status", None)):
            continue
        booking_start = _ensure_aware(getattr(booking, "start_time"))
        booking_end = _ensure_aware(getattr(booking, "end_time"))
        if intervals_overlap(candidate_start, candidate_end, booking_start, booking_end):
            return booking
    return None


def is_slot_available(slot: Slot, bookings: Iterable[Any]) -> bool:
    return find_conflicting_booking(slot.start, slot.end, bookings) is None


def filter_available_slots(slots: Iterable[Slot], bookings: Iterable[Any]) -> list[Slot]:
    live_bookings = list(bookings)
    return [slot for slot in slots if is_slot_available(slot, live_bookings)]


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
