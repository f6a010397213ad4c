from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

import dateparser
from pydantic import BaseModel, Field

from app.bookings.conflicts import Slot, filter_available_slots
from app.bookings.errors import ToolInactiveError, ToolNotFoundError

if TYPE_CHECKING:
    from app.db.repository import BookingRepository


@dataclass(frozen=True)
class Window:
    start_time: time
    end_time: time
    slot_duration_minutes: int


class AvailabilityArgs(BaseModel):
    tool_id: str = Field(min_length=1)
    date: str = Field(min_length=1)


def parse_availability_args(raw_args: dict[str, Any]) -> AvailabilityArgs:
    return AvailabilityArgs.model_validate(raw_args)


def require_active_tool(repository: BookingRepository, tool_id: str) -> Any:
    tool = repository.find_tool(tool_id)
    if tool is None:
        raise ToolNotFoundError("Tool not found or inactive")
    if not getattr(tool, "active", False):
        raise ToolInactiveError("Tool not found or inactive")
    return tool


def day_of_week(day: date) -> int:
    """Day index as stored on templates: 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def get_active_windows(repository: BookingRepository, tool_id: str, dow: int) -> list[Window]:
    return [
        Window(
            start_time=template.start_time,
            end_time=template.end_time,
            slot_duration_minutes=template.slot_duration,
        )
        for template in repository.find_templates(tool_id, dow)
        if template.active
    ]


def generate_slots(day: date, windows: list[Window], tzinfo: ZoneInfo) -> list[Slot]:
    """Expand each window into back-to-back slots on ``day``.

    A trailing slot that would run past the end of its window is dropped.
    Overlapping windows are not merged; each contributes its own run and
    the combined list is ordered by start time.
    """
    slots: list[Slot] = []
    for window in windows:
        if window.slot_duration_minutes <= 0:
            continue
        step = timedelta(minutes=window.slot_duration_minutes)
        cursor = datetime.combine(day, window.start_time, tzinfo=tzinfo)
        window_end = datetime.combine(day, window.end_time, tzinfo=tzinfo)
        while cursor + step <= window_end:
            slots.append(Slot(start=cursor, end=cursor + step))
            cursor += step
    return sorted(slots, key=lambda slot: slot.start)


def day_bounds(day: date, tzinfo: ZoneInfo) -> tuple[datetime, datetime]:
    day_start = datetime.combine(day, time.min, tzinfo=tzinfo)
    day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tzinfo)
    return day_start, day_end


def find_available_slots(
    repository: BookingRepository,
    tool_id: str,
    day: date,
    windows: list[Window],
    tzinfo: ZoneInfo,
) -> list[Slot]:
    day_start, day_end = day_bounds(day, tzinfo)
    existing_bookings = repository.find_live_bookings(
        tool_id,
        range_start=day_start,
        range_end=day_end,
    )
    return filter_available_slots(generate_slots(day, windows, tzinfo), existing_bookings)


def serialize_slot_start(slot: Slot) -> str:
    return slot.start.astimezone(timezone.utc).isoformat()


def resolve_requested_date(
    date_text: str,
    tzinfo: ZoneInfo,
    now_dt: datetime | None = None,
) -> date | None:
    """Calendar date in ``tzinfo`` for ``date_text``, or None when unusable.

    The first and last days of the calendar are refused since their day
    bounds cannot be expressed in every timezone.
    """
    text = (date_text or "").strip()
    if not text:
        return None

    try:
        day = _resolve_day(text, tzinfo, now_dt)
    except OverflowError:
        return None
    if day is None or not date.min < day < date.max:
        return None
    return day


def _resolve_day(text: str, tzinfo: ZoneInfo, now_dt: datetime | None) -> date | None:
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass

    explicit = _parse_iso_datetime(text)
    if explicit is not None:
        if explicit.tzinfo is None:
            return explicit.date()
        return explicit.astimezone(tzinfo).date()

    reference_dt = (now_dt or datetime.now(timezone.utc)).astimezone(tzinfo)
    parsed = dateparser.parse(
        text,
        settings={
            "RETURN_AS_TIMEZONE_AWARE": True,
            "TIMEZONE": tzinfo.key,
            "TO_TIMEZONE": tzinfo.key,
            "RELATIVE_BASE": reference_dt.replace(tzinfo=None),
            "PREFER_DATES_FROM": "future",
        },
    )
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.date()
    return parsed.astimezone(tzinfo).date()


def _parse_iso_datetime(text: str) -> datetime | None:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None
