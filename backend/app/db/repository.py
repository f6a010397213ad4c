from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.bookings.lifecycle import LIVE_BOOKING_STATUSES
from app.db.models import AvailabilityTemplate, Booking, Tool, User


class BookingRepository(Protocol):
    def find_tool(self, tool_id: str) -> Tool | None: ...

    def find_templates(self, tool_id: str, day_of_week: int) -> list[AvailabilityTemplate]: ...

    def find_live_bookings(
        self,
        tool_id: str,
        range_start: datetime | None = None,
        range_end: datetime | None = None,
    ) -> list[Booking]: ...

    def lock_tool(self, tool_id: str) -> None: ...

    def find_user(self, manychat_id: str) -> User | None: ...

    def get_or_create_user(self, manychat_id: str) -> User: ...

    def insert_booking(self, booking: Booking) -> Booking: ...

    def list_user_bookings(self, user_id: str, statuses: Iterable[str]) -> list[Booking]: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class SqlAlchemyBookingRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_tool(self, tool_id: str) -> Tool | None:
        return self.db.get(Tool, tool_id)

    def find_templates(self, tool_id: str, day_of_week: int) -> list[AvailabilityTemplate]:
        stmt = (
            select(AvailabilityTemplate)
            .where(AvailabilityTemplate.tool_id == tool_id)
            .where(AvailabilityTemplate.day_of_week == day_of_week)
            .where(AvailabilityTemplate.active.is_(True))
            .order_by(AvailabilityTemplate.start_time)
        )
        return list(self.db.scalars(stmt))

    def find_live_bookings(
        self,
        tool_id: str,
        range_start: datetime | None = None,
        range_end: datetime | None = None,
    ) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.tool_id == tool_id)
            .where(Booking.status.in_(sorted(LIVE_BOOKING_STATUSES)))
        )
        if range_start is not None:
            stmt = stmt.where(Booking.end_time > range_start)
        if range_end is not None:
            stmt = stmt.where(Booking.start_time < range_end)
        return list(self.db.scalars(stmt.order_by(Booking.start_time)))

    def lock_tool(self, tool_id: str) -> None:
        # Row lock serialises concurrent writers for one tool across workers.
        self.db.execute(select(Tool.id).where(Tool.id == tool_id).with_for_update())

    def find_user(self, manychat_id: str) -> User | None:
        return self.db.scalars(select(User).where(User.manychat_id == manychat_id)).first()

    def get_or_create_user(self, manychat_id: str) -> User:
        existing = self.find_user(manychat_id)
        if existing is not None:
            return existing

        user = User(id=str(uuid4()), manychat_id=manychat_id)
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent insert of the same manychat_id.
            self.db.rollback()
            existing = self.find_user(manychat_id)
            if existing is None:
                raise
            return existing
        return user

    def insert_booking(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self.db.flush()
        return booking

    def list_user_bookings(self, user_id: str, statuses: Iterable[str]) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .where(Booking.status.in_(list(statuses)))
            .order_by(Booking.start_time.asc())
        )
        return list(self.db.scalars(stmt))

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
