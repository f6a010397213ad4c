from datetime import date, datetime, time, timezone
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.bookings.availability import find_available_slots, get_active_windows
from app.bookings.create_booking import create_booking, parse_create_booking_args
from app.bookings.errors import BookingConflictError
from app.bookings.list_bookings import list_user_bookings, parse_list_bookings_args
from app.bookings.tool_config import parse_tool_config
from app.db import Admin, AvailabilityTemplate, Base, Booking, Tool
from app.db.repository import SqlAlchemyBookingRepository


@pytest.fixture
def db():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def tool(db):
    admin = Admin(id=str(uuid4()), username="owner")
    tool = Tool(
        id=str(uuid4()),
        admin_id=admin.id,
        name="Haircut",
        type="booking",
        active=True,
        config={"timezone": "UTC"},
    )
    db.add_all([admin, tool])
    db.add_all(
        [
            AvailabilityTemplate(
                id=str(uuid4()),
                tool_id=tool.id,
                day_of_week=1,
                start_time=time(9),
                end_time=time(17),
                slot_duration=30,
                active=True,
            ),
            AvailabilityTemplate(
                id=str(uuid4()),
                tool_id=tool.id,
                day_of_week=1,
                start_time=time(18),
                end_time=time(20),
                slot_duration=30,
                active=False,
            ),
        ]
    )
    db.commit()
    return tool


def _book(repository, tool, start_time, duration=30, user="mc_user_1"):
    args = parse_create_booking_args(
        {
            "manychat_user_id": user,
            "tool_id": tool.id,
            "start_time": start_time,
            "duration": duration,
        }
    )
    return create_booking(repository, tool, parse_tool_config(tool.config), args)


def test_find_templates_returns_active_templates_only(db, tool):
    repository = SqlAlchemyBookingRepository(db)

    templates = repository.find_templates(tool.id, 1)

    assert [t.start_time for t in templates] == [time(9)]
    assert repository.find_templates(tool.id, 2) == []


def test_get_or_create_user_is_idempotent(db):
    repository = SqlAlchemyBookingRepository(db)

    first = repository.get_or_create_user("mc_user_1")
    db.commit()
    second = repository.get_or_create_user("mc_user_1")

    assert first.id == second.id
    assert repository.find_user("mc_user_1").id == first.id
    assert repository.find_user("unknown") is None


def test_create_booking_persists_and_blocks_overlap(db, tool):
    repository = SqlAlchemyBookingRepository(db)

    created = _book(repository, tool, "2026-10-19T10:00:00Z", duration=60)
    with pytest.raises(BookingConflictError):
        _book(repository, tool, "2026-10-19T10:30:00Z", user="mc_user_2")
    adjacent = _book(repository, tool, "2026-10-19T11:00:00Z", user="mc_user_2")

    rows = db.query(Booking).all()
    assert {row.id for row in rows} == {created["booking_id"], adjacent["booking_id"]}
    assert all(row.status == "pending" for row in rows)


def test_find_live_bookings_filters_status_and_day_range(db, tool):
    repository = SqlAlchemyBookingRepository(db)
    _book(repository, tool, "2026-10-19T09:00:00Z")
    _book(repository, tool, "2026-10-19T12:00:00Z")
    _book(repository, tool, "2026-10-20T09:00:00Z")
    cancelled = next(row for row in db.query(Booking).all() if row.start_time.hour == 12)
    cancelled.status = "cancelled"
    db.commit()

    rows = repository.find_live_bookings(
        tool.id,
        range_start=datetime(2026, 10, 19, tzinfo=timezone.utc),
        range_end=datetime(2026, 10, 20, tzinfo=timezone.utc),
    )

    assert len(rows) == 1
    assert rows[0].start_time.replace(tzinfo=None) == datetime(2026, 10, 19, 9, 0)
    assert len(repository.find_live_bookings(tool.id)) == 2


def test_availability_over_sqlite_store(db, tool):
    repository = SqlAlchemyBookingRepository(db)
    _book(repository, tool, "2026-10-19T10:00:00Z")
    windows = get_active_windows(repository, tool.id, 1)

    slots = find_available_slots(repository, tool.id, date(2026, 10, 19), windows, ZoneInfo("UTC"))

    starts = [slot.start for slot in slots]
    assert len(starts) == 15
    assert datetime(2026, 10, 19, 10, tzinfo=timezone.utc) not in starts


def test_list_user_bookings_over_sqlite_store(db, tool):
    repository = SqlAlchemyBookingRepository(db)
    _book(repository, tool, "2026-10-19T15:00:00Z")
    _book(repository, tool, "2026-10-19T09:00:00Z")

    bookings = list_user_bookings(repository, parse_list_bookings_args({"manychat_user_id": "mc_user_1"}))

    assert [b["start_time"] for b in bookings] == [
        "2026-10-19T09:00:00+00:00",
        "2026-10-19T15:00:00+00:00",
    ]
    assert bookings[0]["tool_name"] == "Haircut"
