from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from app.bookings.lifecycle import LIVE_BOOKING_STATUSES

if TYPE_CHECKING:
    from app.db.repository import BookingRepository


class ListBookingsArgs(BaseModel):
    manychat_user_id: str = Field(min_length=1)


def parse_list_bookings_args(raw_args: dict[str, Any]) -> ListBookingsArgs:
    return ListBookingsArgs.model_validate(raw_args)


def list_user_bookings(
    repository: BookingRepository,
    args: ListBookingsArgs,
) -> list[dict[str, Any]] | None:
    """Live bookings of a Manychat user, past and future, or None for an unknown user."""
    user = repository.find_user(args.manychat_user_id)
    if user is None:
        return None

    bookings = repository.list_user_bookings(user.id, LIVE_BOOKING_STATUSES)
    tool_names: dict[str, str | None] = {}
    result = []
    for booking in sorted(bookings, key=lambda b: _ensure_aware(b.start_time)):
        if booking.tool_id not in tool_names:
            tool = repository.find_tool(booking.tool_id)
            tool_names[booking.tool_id] = tool.name if tool is not None else None
        result.append(
            {
                "id": booking.id,
                "tool_name": tool_names[booking.tool_id],
                "start_time": _ensure_aware(booking.start_time).astimezone(timezone.utc).isoformat(),
                "end_time": _ensure_aware(booking.end_time).astimezone(timezone.utc).isoformat(),
                "status": booking.status,
                "notes": booking.notes,
            }
        )
    return result


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
