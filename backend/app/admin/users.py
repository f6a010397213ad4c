from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.models import Booking, Tool, User

MAX_USERS_PAGE = 1000


class ListUsersArgs(BaseModel):
    limit: int = Field(default=50, ge=1, le=MAX_USERS_PAGE)
    offset: int = Field(default=0, ge=0)
    search: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None


def list_admin_users(db: Session, admin_id: str, args: ListUsersArgs) -> dict[str, Any]:
    """Users who booked any of the admin's tools, newest first, with paging."""
    tool_ids = {tool.id for tool in db.query(Tool).all() if tool.admin_id == admin_id}
    booking_counts: dict[str, int] = {}
    for booking in db.query(Booking).all():
        if booking.tool_id in tool_ids:
            booking_counts[booking.user_id] = booking_counts.get(booking.user_id, 0) + 1

    users = [
        user
        for user in db.query(User).all()
        if user.id in booking_counts and _matches(user, args)
    ]
    users.sort(key=_created_at_sort_key, reverse=True)

    page = users[args.offset : args.offset + args.limit]
    return {
        "users": [serialize_user(user, bookings_count=booking_counts[user.id]) for user in page],
        "pagination": {
            "total": len(users),
            "limit": args.limit,
            "offset": args.offset,
            "has_more": args.offset + len(page) < len(users),
        },
    }


def serialize_user(user: User, bookings_count: int = 0) -> dict[str, Any]:
    return {
        "id": user.id,
        "manychat_id": user.manychat_id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "phone": user.phone,
        "timezone": user.timezone,
        "bookings_count": bookings_count,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _matches(user: User, args: ListUsersArgs) -> bool:
    if args.search:
        needle = args.search.lower()
        haystack = (user.first_name, user.last_name, user.email, user.manychat_id)
        if not any(needle in value.lower() for value in haystack if value):
            return False
    created_at = _aware(user.created_at)
    if args.created_after is not None and (created_at is None or created_at < _aware(args.created_after)):
        return False
    if args.created_before is not None and (created_at is None or created_at > _aware(args.created_before)):
        return False
    return True


def _aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _created_at_sort_key(user: User) -> datetime:
    return _aware(user.created_at) or datetime.min.replace(tzinfo=timezone.utc)
