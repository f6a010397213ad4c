from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import IntegrityError

from app.bookings.conflicts import find_conflicting_booking
from app.bookings.errors import BookingConflictError, BookingValidationError, ToolNotFoundError
from app.bookings.lifecycle import BookingStatus
from app.bookings.tool_config import (
    MAX_BOOKING_DURATION_MINUTES,
    MIN_BOOKING_DURATION_MINUTES,
    ToolConfig,
)
from app.db.models import Booking, Tool

if TYPE_CHECKING:
    from app.db.repository import BookingRepository


logger = logging.getLogger("mchattools.bookings.create_booking")


class CreateBookingArgs(BaseModel):
    manychat_user_id: str = Field(min_length=1)
    tool_id: str = Field(min_length=1)
    start_time: datetime
    duration: int = Field(ge=MIN_BOOKING_DURATION_MINUTES, le=MAX_BOOKING_DURATION_MINUTES)
    notes: str | None = None

    @field_validator("start_time")
    @classmethod
    def normalize_start_time(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def check_interval_is_representable(self) -> "CreateBookingArgs":
        try:
            self.start_time.astimezone(timezone.utc) + timedelta(minutes=self.duration)
        except OverflowError as exc:
            raise ValueError("start_time is out of range") from exc
        return self


def parse_create_booking_args(raw_args: dict[str, Any]) -> CreateBookingArgs:
    return CreateBookingArgs.model_validate(raw_args)


class ToolLockRegistry:
    """One lock per tool so a worker never interleaves two creates for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def for_tool(self, tool_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(tool_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[tool_id] = lock
            return lock


tool_locks = ToolLockRegistry()

OVERLAP_CONSTRAINT = "ex_bookings_tool_no_overlap"
TOOL_FOREIGN_KEY = "fk_bookings_tool_id"


def violated_constraint(exc: IntegrityError) -> str | None:
    """Name of the constraint behind ``exc`` as reported by the driver."""
    diag = getattr(exc.orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    if name:
        return name
    message = str(exc.orig)
    for candidate in (OVERLAP_CONSTRAINT, TOOL_FOREIGN_KEY):
        if candidate in message:
            return candidate
    return None


def create_booking(
    repository: BookingRepository,
    tool: Tool,
    config: ToolConfig,
    args: CreateBookingArgs,
) -> dict[str, Any]:
    if not config.min_duration_minutes <= args.duration <= config.max_duration_minutes:
        raise BookingValidationError(
            f"Duration must be between {config.min_duration_minutes} and "
            f"{config.max_duration_minutes} minutes for this tool."
        )

    start_time = args.start_time.astimezone(timezone.utc)
    end_time = start_time + timedelta(minutes=args.duration)

    with tool_locks.for_tool(tool.id):
        try:
            user = repository.get_or_create_user(args.manychat_user_id)
            repository.lock_tool(tool.id)

            live_bookings = repository.find_live_bookings(tool.id)
            conflict = find_conflicting_booking(start_time, end_time, live_bookings)
            if conflict is not None:
                raise BookingConflictError("Time slot not available")

            booking = Booking(
                id=str(uuid4()),
                tool_id=tool.id,
                user_id=user.id,
                start_time=start_time,
                end_time=end_time,
                status=BookingStatus.PENDING.value,
                notes=args.notes,
            )
            repository.insert_booking(booking)
            repository.commit()
        except BookingConflictError:
            repository.rollback()
            logger.info(
                json.dumps(
                    {
                        "event": "booking_conflict",
                        "tool_id": tool.id,
                        "start_time": start_time.isoformat(),
                        "end_time": end_time.isoformat(),
                    }
                )
            )
            raise
        except IntegrityError as exc:
            repository.rollback()
            constraint = violated_constraint(exc)
            if constraint == OVERLAP_CONSTRAINT:
                raise BookingConflictError("Time slot not available") from exc
            if constraint == TOOL_FOREIGN_KEY:
                raise ToolNotFoundError("Tool not found or inactive") from exc
            raise
        except Exception:
            repository.rollback()
            raise

    logger.info(
        json.dumps(
            {
                "event": "booking_created",
                "booking_id": booking.id,
                "tool_id": tool.id,
                "user_id": user.id,
            }
        )
    )
    return {
        "success": True,
        "booking_id": booking.id,
        "tool_name": tool.name,
        "start_time": start_time.isoformat(),
        "end_time": end_time.isoformat(),
        "status": booking.status,
        "notes": booking.notes,
        "manychat_user_id": user.manychat_id,
    }
