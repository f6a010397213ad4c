from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.admin.tools import get_owned_tool
from app.bookings.errors import BookingNotFoundError
from app.bookings.lifecycle import BookingStatus, resolve_status_transition
from app.db.models import Booking, Tool, User

logger = logging.getLogger("mchattools.admin.bookings")

ADMIN_BOOKINGS_LIMIT = 100


class UpdateBookingStatusArgs(BaseModel):
    status: BookingStatus


def list_tool_bookings(db: Session, tool: Tool) -> list[dict[str, Any]]:
    users = {user.id: user for user in db.query(User).all()}
    bookings = [b for b in db.query(Booking).all() if b.tool_id == tool.id]
    return [
        serialize_booking(booking, user=users.get(booking.user_id))
        for booking in sorted(bookings, key=lambda b: _ensure_aware(b.start_time), reverse=True)
    ]


def list_admin_bookings(db: Session, admin_id: str, limit: int = ADMIN_BOOKINGS_LIMIT) -> list[dict[str, Any]]:
    """Most recent bookings across every tool the admin owns, newest start first."""
    tools = {tool.id: tool for tool in db.query(Tool).all() if tool.admin_id == admin_id}
    users = {user.id: user for user in db.query(User).all()}
    bookings = sorted(
        (b for b in db.query(Booking).all() if b.tool_id in tools),
        key=lambda b: _ensure_aware(b.start_time),
        reverse=True,
    )
    result = []
    for booking in bookings[:limit]:
        payload = serialize_booking(booking, user=users.get(booking.user_id))
        payload["tool_name"] = tools[booking.tool_id].name
        result.append(payload)
    return result


def update_booking_status(
    db: Session,
    admin_id: str,
    booking_id: str,
    args: UpdateBookingStatusArgs,
) -> tuple[Booking, Tool, BookingStatus | None]:
    """Apply an admin-driven status change.

    Returns the booking, its tool and the new status (None if unchanged).
    """
    booking = _find_booking(db, booking_id=booking_id)
    if booking is None:
        raise BookingNotFoundError("Booking not found.")

    tool = get_owned_tool(db, admin_id=admin_id, tool_id=booking.tool_id)
    if tool is None:
        raise BookingNotFoundError("Booking not found.")

    previous_status = booking.status
    new_status = resolve_status_transition(previous_status, args.status.value)
    if new_status is None:
        return booking, tool, None

    booking.status = new_status.value
    db.commit()
    logger.info(
        json.dumps(
            {
                "event": "booking_status_changed",
                "booking_id": booking.id,
                "from": previous_status,
                "to": new_status.value,
            }
        )
    )
    return booking, tool, new_status


def serialize_booking(booking: Booking, user: User | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": booking.id,
        "tool_id": booking.tool_id,
        "start_time": _ensure_aware(booking.start_time).isoformat(),
        "end_time": _ensure_aware(booking.end_time).isoformat(),
        "status": booking.status,
        "notes": booking.notes,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
    }
    if user is not None:
        full_name = " ".join(part for part in (user.first_name, user.last_name) if part)
        payload["user"] = {
            "manychat_id": user.manychat_id,
            "name": full_name or "Unknown",
            "email": user.email,
        }
    return payload


def _find_booking(db: Session, booking_id: str) -> Booking | None:
    for booking in db.query(Booking).all():
        if booking.id == booking_id:
            return booking
    return None


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
