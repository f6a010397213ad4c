from __future__ import annotations

from enum import Enum

from app.bookings.errors import InvalidStatusTransitionError


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Only these statuses occupy calendar space.
LIVE_BOOKING_STATUSES = frozenset({BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value})

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}


def is_live_status(status: str | None) -> bool:
    return str(status or "").lower() in LIVE_BOOKING_STATUSES


def resolve_status_transition(current: str, target: str) -> BookingStatus | None:
    """Validate a status change.

    Returns the new status, or None when the booking is already in the
    requested state. Terminal states (cancelled, completed) never change,
    so a booking that stopped occupying its slot can not start again.
    """
    try:
        current_status = BookingStatus(str(current).lower())
        target_status = BookingStatus(str(target).lower())
    except ValueError as exc:
        raise InvalidStatusTransitionError(f"Unknown booking status: {exc}") from exc

    if current_status == target_status:
        return None
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidStatusTransitionError(
            f"Cannot change booking status from {current_status.value} to {target_status.value}."
        )
    return target_status
