import random
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError

from app.bookings.conflicts import intervals_overlap
from app.bookings.create_booking import create_booking, parse_create_booking_args
from app.bookings.errors import BookingConflictError, BookingValidationError, ToolNotFoundError
from app.bookings.tool_config import parse_tool_config
from app.main import app


client = TestClient(app)


def _payload(tool_id, start_time="2026-10-19T10:00:00Z", duration=30, **extra):
    return {
        "manychat_user_id": "mc_user_1",
        "tool_id": tool_id,
        "start_time": start_time,
        "duration": duration,
        **extra,
    }


def _create(repository, tool, start, duration=30, manychat_user_id="mc_user_1"):
    args = parse_create_booking_args(
        {
            "manychat_user_id": manychat_user_id,
            "tool_id": tool.id,
            "start_time": start.isoformat(),
            "duration": duration,
        }
    )
    return create_booking(repository, tool, parse_tool_config(tool.config), args)


def test_create_booking_returns_pending_booking(published_events, repository, monday_tool):
    response = client.post("/bookings/create", json=_payload(monday_tool.id, notes="first visit"))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "pending"
    assert body["tool_name"] == "Haircut"
    assert body["start_time"] == "2026-10-19T10:00:00+00:00"
    assert body["end_time"] == "2026-10-19T10:30:00+00:00"
    assert body["notes"] == "first visit"
    assert len(repository.bookings) == 1
    assert repository.bookings[0].id == body["booking_id"]


def test_create_booking_publishes_event_after_commit(published_events, monday_tool):
    response = client.post("/api/bookings/create", json=_payload(monday_tool.id))

    assert response.status_code == 200
    assert len(published_events) == 1
    admin_id, event, data = published_events[0]
    assert admin_id == monday_tool.admin_id
    assert event == "booking.created"
    assert data["booking_id"] == response.json()["booking_id"]
    assert data["manychat_user_id"] == "mc_user_1"


def test_create_booking_conflict_returns_409(published_events, repository, monday_tool):
    repository.add_booking(
        monday_tool,
        datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc),
        datetime(2026, 10, 19, 11, 0, tzinfo=timezone.utc),
        status="confirmed",
    )

    response = client.post(
        "/bookings/create", json=_payload(monday_tool.id, start_time="2026-10-19T10:15:00Z")
    )

    assert response.status_code == 409
    assert response.json() == {"error": "Time slot not available"}
    assert len(repository.bookings) == 1
    assert published_events == []


def test_create_booking_unknown_tool_returns_404(published_events, repository):
    inactive = repository.add_tool(active=False)

    for tool_id in ("missing-tool", inactive.id):
        response = client.post("/bookings/create", json=_payload(tool_id))
        assert response.status_code == 404
        assert response.json() == {"error": "Tool not found or inactive"}
    assert repository.bookings == []


@pytest.mark.parametrize("duration", [10, 481])
def test_create_booking_rejects_out_of_range_duration(published_events, repository, monday_tool, duration):
    response = client.post("/bookings/create", json=_payload(monday_tool.id, duration=duration))

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request data"
    assert body["details"][0]["field"] == "duration"
    assert repository.users == {}


def test_create_booking_rejects_missing_fields(published_events):
    response = client.post("/bookings/create", json={"tool_id": "x"})

    assert response.status_code == 400
    fields = {item["field"] for item in response.json()["details"]}
    assert {"manychat_user_id", "start_time", "duration"} <= fields


def test_tool_duration_bounds_are_enforced(published_events, repository):
    tool = repository.add_tool(config={"max_duration_minutes": 60})

    response = client.post("/bookings/create", json=_payload(tool.id, duration=90))

    assert response.status_code == 400
    assert "between 15 and 60" in response.json()["error"]
    assert repository.bookings == []


def test_touching_bookings_are_both_accepted(repository, monday_tool):
    first = _create(repository, monday_tool, datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc))
    second = _create(repository, monday_tool, datetime(2026, 10, 19, 10, 30, tzinfo=timezone.utc))
    before = _create(repository, monday_tool, datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc))

    assert first["end_time"] == second["start_time"]
    assert before["end_time"] == first["start_time"]
    assert len(repository.bookings) == 3


def test_cancelled_booking_frees_its_slot(repository, monday_tool):
    start = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)
    repository.add_booking(monday_tool, start, start + timedelta(minutes=30), status="cancelled")

    result = _create(repository, monday_tool, start)

    assert result["status"] == "pending"


def test_conflict_check_spans_all_days(repository, monday_tool):
    start = datetime(2026, 10, 19, 23, 0, tzinfo=timezone.utc)
    repository.add_booking(monday_tool, start, start + timedelta(hours=2))

    with pytest.raises(BookingConflictError):
        _create(repository, monday_tool, datetime(2026, 10, 20, 0, 30, tzinfo=timezone.utc))


def test_naive_start_time_is_treated_as_utc(repository, monday_tool):
    args = parse_create_booking_args(_payload(monday_tool.id, start_time="2026-10-19T10:00:00"))

    result = create_booking(repository, monday_tool, parse_tool_config(monday_tool.config), args)

    assert result["start_time"] == "2026-10-19T10:00:00+00:00"


def test_duration_outside_tool_bounds_leaves_no_user(repository):
    tool = repository.add_tool(config={"min_duration_minutes": 60})

    with pytest.raises(BookingValidationError):
        _create(repository, tool, datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc), duration=30)
    assert repository.users == {}


def test_random_sequential_creates_never_overlap(repository, monday_tool):
    rng = random.Random(20261019)
    base = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)

    accepted = 0
    for _ in range(200):
        start = base + timedelta(minutes=5 * rng.randint(0, 12 * 12))
        duration = rng.choice([15, 30, 45, 60, 90, 120])
        try:
            _create(repository, monday_tool, start, duration=duration)
            accepted += 1
        except BookingConflictError:
            continue

    live = repository.find_live_bookings(monday_tool.id)
    assert accepted == len(live) > 0
    for index, first in enumerate(live):
        for second in live[index + 1 :]:
            assert not intervals_overlap(
                first.start_time, first.end_time, second.start_time, second.end_time
            )


def test_concurrent_overlapping_creates_admit_exactly_one(repository_factory):
    repository = repository_factory(read_delay=0.05)
    tool = repository.add_tool(config={"timezone": "UTC"})
    start = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)
    barrier = threading.Barrier(2)

    def attempt(user_id):
        barrier.wait()
        try:
            return _create(repository, tool, start, duration=60, manychat_user_id=user_id)
        except BookingConflictError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(attempt, ["mc_a", "mc_b"]))

    successes = [r for r in results if isinstance(r, dict)]
    conflicts = [r for r in results if isinstance(r, BookingConflictError)]
    assert len(successes) == 1
    assert successes[0]["status"] == "pending"
    assert len(conflicts) == 1
    assert len(repository.find_live_bookings(tool.id)) == 1


def test_storage_constraint_violation_is_reported_as_conflict(repository, monday_tool):
    def failing_commit():
        raise IntegrityError("INSERT INTO bookings", {}, Exception("ex_bookings_tool_no_overlap"))

    repository.commit = failing_commit

    with pytest.raises(BookingConflictError):
        _create(repository, monday_tool, datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc))
    assert repository.rollbacks == 1
    assert repository.bookings == []


class _Diag:
    def __init__(self, constraint_name):
        self.constraint_name = constraint_name


class _DriverError(Exception):
    def __init__(self, constraint_name):
        super().__init__(f'violates constraint "{constraint_name}"')
        self.diag = _Diag(constraint_name)


def test_deleted_tool_foreign_key_violation_is_not_found(repository, monday_tool):
    def failing_commit():
        raise IntegrityError("INSERT INTO bookings", {}, _DriverError("fk_bookings_tool_id"))

    repository.commit = failing_commit

    with pytest.raises(ToolNotFoundError):
        _create(repository, monday_tool, datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc))
    assert repository.rollbacks == 1


def test_unrelated_integrity_error_propagates(repository, monday_tool):
    def failing_commit():
        raise IntegrityError("INSERT INTO bookings", {}, _DriverError("ck_bookings_interval"))

    repository.commit = failing_commit

    with pytest.raises(IntegrityError):
        _create(repository, monday_tool, datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc))
    assert repository.rollbacks == 1


def test_tool_deleted_during_create_returns_404(published_events, repository, monday_tool):
    def failing_commit():
        raise IntegrityError("INSERT INTO bookings", {}, _DriverError("fk_bookings_tool_id"))

    repository.commit = failing_commit

    response = client.post("/bookings/create", json=_payload(monday_tool.id))

    assert response.status_code == 404
    assert response.json() == {"error": "Tool not found or inactive"}
    assert published_events == []


@pytest.mark.parametrize(
    "start_time",
    ["9999-12-31T23:50:00Z", "9999-12-31T22:00:00-05:00", "0001-01-01T00:00:00+05:00"],
)
def test_create_booking_rejects_unrepresentable_start_time(published_events, repository, monday_tool, start_time):
    response = client.post("/bookings/create", json=_payload(monday_tool.id, start_time=start_time))

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request data"
    assert "out of range" in body["details"][0]["message"]
    assert repository.users == {}
    assert repository.bookings == []
