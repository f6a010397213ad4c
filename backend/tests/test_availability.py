from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from fastapi.testclient import TestClient

from app.bookings.availability import (
    Window,
    day_of_week,
    find_available_slots,
    generate_slots,
    get_active_windows,
    resolve_requested_date,
)
from app.main import app


client = TestClient(app)

MONDAY = date(2026, 10, 19)
UTC = ZoneInfo("UTC")


def _utc(hour, minute=0, day=MONDAY):
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def test_day_of_week_uses_sunday_first_index():
    assert day_of_week(date(2026, 10, 18)) == 0
    assert day_of_week(MONDAY) == 1
    assert day_of_week(date(2026, 10, 24)) == 6


def test_trailing_partial_slot_is_dropped():
    slots = generate_slots(MONDAY, [Window(time(9, 0), time(10, 1), 30)], UTC)

    assert [slot.start for slot in slots] == [_utc(9, 0), _utc(9, 30)]
    assert slots[-1].end == _utc(10, 0)


def test_multiple_windows_are_unioned_and_ordered():
    windows = [
        Window(time(14, 0), time(15, 0), 30),
        Window(time(9, 0), time(10, 0), 60),
    ]

    slots = generate_slots(MONDAY, windows, UTC)

    assert [slot.start for slot in slots] == [_utc(9), _utc(14), _utc(14, 30)]


def test_non_positive_slot_duration_yields_nothing():
    assert generate_slots(MONDAY, [Window(time(9, 0), time(10, 0), 0)], UTC) == []


def test_slots_are_anchored_in_tool_timezone():
    slots = generate_slots(MONDAY, [Window(time(9, 0), time(10, 0), 30)], ZoneInfo("America/New_York"))

    assert slots[0].start.astimezone(timezone.utc) == _utc(13, 0)


def test_inactive_template_is_excluded(repository, monday_tool):
    repository.add_template(monday_tool, day_of_week=1, start=time(18, 0), end=time(19, 0), active=False)

    windows = get_active_windows(repository, monday_tool.id, 1)

    assert windows == [Window(time(9, 0), time(17, 0), 30)]
    assert get_active_windows(repository, monday_tool.id, 2) == []


def test_confirmed_booking_removes_overlapping_slot(repository, monday_tool):
    repository.add_booking(monday_tool, _utc(10, 0), _utc(10, 30), status="confirmed")
    windows = get_active_windows(repository, monday_tool.id, 1)

    slots = find_available_slots(repository, monday_tool.id, MONDAY, windows, UTC)
    starts = [slot.start for slot in slots]

    assert len(starts) == 15
    assert _utc(10, 0) not in starts
    assert starts[0] == _utc(9, 0)
    assert starts[-1] == _utc(16, 30)


def test_cancelled_and_completed_bookings_do_not_block(repository, monday_tool):
    repository.add_booking(monday_tool, _utc(9, 0), _utc(12, 0), status="cancelled")
    repository.add_booking(monday_tool, _utc(12, 0), _utc(17, 0), status="completed")
    windows = get_active_windows(repository, monday_tool.id, 1)

    slots = find_available_slots(repository, monday_tool.id, MONDAY, windows, UTC)

    assert len(slots) == 16


def test_long_booking_blocks_every_contained_slot(repository, monday_tool):
    repository.add_booking(monday_tool, _utc(9, 45), _utc(11, 15))
    windows = get_active_windows(repository, monday_tool.id, 1)

    starts = [s.start for s in find_available_slots(repository, monday_tool.id, MONDAY, windows, UTC)]

    for blocked in (_utc(9, 30), _utc(10, 0), _utc(10, 30), _utc(11, 0)):
        assert blocked not in starts
    assert _utc(9, 0) in starts
    assert _utc(11, 30) in starts


def test_resolve_requested_date_accepts_iso_date_and_datetime():
    new_york = ZoneInfo("America/New_York")

    assert resolve_requested_date("2026-10-19", UTC) == MONDAY
    assert resolve_requested_date("2026-10-19T00:00:00Z", UTC) == MONDAY
    assert resolve_requested_date("2026-10-19T02:00:00Z", new_york) == date(2026, 10, 18)


def test_resolve_requested_date_handles_relative_phrases():
    now_dt = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    assert resolve_requested_date("tomorrow", UTC, now_dt=now_dt) == date(2026, 10, 20)


def test_resolve_requested_date_rejects_blank_input():
    assert resolve_requested_date("", UTC) is None
    assert resolve_requested_date("   ", UTC) is None


def test_resolve_requested_date_rejects_calendar_edges():
    assert resolve_requested_date("9999-12-31", UTC) is None
    assert resolve_requested_date("0001-01-01", UTC) is None
    assert resolve_requested_date("9999-12-31T23:00:00-05:00", UTC) is None
    assert resolve_requested_date("9999-12-30", UTC) == date(9999, 12, 30)


def test_availability_endpoint_returns_free_slots(published_events, repository, monday_tool):
    repository.add_booking(monday_tool, _utc(10, 0), _utc(10, 30), status="confirmed")

    response = client.get(
        "/bookings/availability", params={"tool_id": monday_tool.id, "date": "2026-10-19"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["tool_id"] == monday_tool.id
    assert body["available_slots"][0] == "2026-10-19T09:00:00+00:00"
    assert "2026-10-19T10:00:00+00:00" not in body["available_slots"]
    assert len(body["available_slots"]) == 15


def test_availability_is_deterministic(published_events, monday_tool):
    params = {"tool_id": monday_tool.id, "date": "2026-10-19"}

    first = client.get("/api/bookings/availability", params=params).json()
    second = client.get("/api/bookings/availability", params=params).json()

    assert first["available_slots"] == second["available_slots"]
    assert first["available_slots"] == sorted(first["available_slots"])


def test_availability_reports_empty_day(published_events, monday_tool):
    response = client.get(
        "/bookings/availability", params={"tool_id": monday_tool.id, "date": "2026-10-20"}
    )

    assert response.status_code == 200
    assert response.json()["available_slots"] == []
    assert response.json()["message"] == "No availability for this day"


def test_availability_requires_parameters(published_events):
    response = client.get("/bookings/availability", params={"date": "2026-10-19"})

    assert response.status_code == 400
    assert response.json()["error"] == "tool_id and date are required"


def test_availability_unknown_or_inactive_tool(published_events, repository):
    inactive = repository.add_tool(active=False)

    for tool_id in ("missing", inactive.id):
        response = client.get(
            "/bookings/availability", params={"tool_id": tool_id, "date": "2026-10-19"}
        )
        assert response.status_code == 404
        assert response.json() == {"error": "Tool not found or inactive"}


def test_availability_invalid_tool_config(published_events, repository):
    tool = repository.add_tool(config={"timezone": "Mars/Olympus_Mons"})

    response = client.get("/bookings/availability", params={"tool_id": tool.id, "date": "2026-10-19"})

    assert response.status_code == 500
    assert response.json()["error"] == "Tool configuration is invalid"


def test_availability_on_last_calendar_day_is_invalid_date(published_events, repository):
    tool = repository.add_tool(config={"timezone": "America/New_York"})
    # 9999-12-31 is a Friday.
    repository.add_template(tool, day_of_week=5, start=time(9, 0), end=time(17, 0))

    response = client.get("/bookings/availability", params={"tool_id": tool.id, "date": "9999-12-31"})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid date"}
