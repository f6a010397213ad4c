import threading
import time as time_module
from datetime import time
from uuid import uuid4

import pytest

from app.db.models import AvailabilityTemplate, Booking, Tool, User


class InMemoryBookingRepository:
    """Stand-in for SqlAlchemyBookingRepository with transaction-like staging."""

    def __init__(self, read_delay: float = 0.0):
        self.tools: dict[str, Tool] = {}
        self.templates: list[AvailabilityTemplate] = []
        self.bookings: list[Booking] = []
        self.users: dict[str, User] = {}
        self.read_delay = read_delay
        self.commits = 0
        self.rollbacks = 0
        self._staged: list[Booking] = []
        self._guard = threading.Lock()

    def add_tool(self, name="Haircut", active=True, config=None, admin_id="admin-1", tool_id=None):
        tool = Tool(
            id=tool_id or str(uuid4()),
            admin_id=admin_id,
            name=name,
            type="booking",
            description=None,
            active=active,
            config=config or {},
        )
        self.tools[tool.id] = tool
        return tool

    def add_template(self, tool, day_of_week, start, end, slot_duration=30, active=True):
        template = AvailabilityTemplate(
            id=str(uuid4()),
            tool_id=tool.id,
            day_of_week=day_of_week,
            start_time=start,
            end_time=end,
            slot_duration=slot_duration,
            active=active,
        )
        self.templates.append(template)
        return template

    def add_booking(self, tool, start, end, status="pending", manychat_id="mc-seed"):
        user = self.get_or_create_user(manychat_id)
        booking = Booking(
            id=str(uuid4()),
            tool_id=tool.id,
            user_id=user.id,
            start_time=start,
            end_time=end,
            status=status,
            notes=None,
        )
        self.bookings.append(booking)
        return booking

    def find_tool(self, tool_id):
        return self.tools.get(tool_id)

    def find_templates(self, tool_id, day_of_week):
        return [
            t
            for t in self.templates
            if t.tool_id == tool_id and t.day_of_week == day_of_week and t.active
        ]

    def find_live_bookings(self, tool_id, range_start=None, range_end=None):
        if self.read_delay:
            time_module.sleep(self.read_delay)
        rows = [
            b
            for b in self.bookings
            if b.tool_id == tool_id and b.status in {"pending", "confirmed"}
        ]
        if range_start is not None:
            rows = [b for b in rows if b.end_time > range_start]
        if range_end is not None:
            rows = [b for b in rows if b.start_time < range_end]
        return sorted(rows, key=lambda b: b.start_time)

    def lock_tool(self, tool_id):
        return None

    def find_user(self, manychat_id):
        return self.users.get(manychat_id)

    def get_or_create_user(self, manychat_id):
        with self._guard:
            user = self.users.get(manychat_id)
            if user is None:
                user = User(id=str(uuid4()), manychat_id=manychat_id)
                self.users[manychat_id] = user
            return user

    def insert_booking(self, booking):
        self._staged.append(booking)
        return booking

    def list_user_bookings(self, user_id, statuses):
        wanted = set(statuses)
        return [b for b in self.bookings if b.user_id == user_id and b.status in wanted]

    def commit(self):
        self.bookings.extend(self._staged)
        self._staged = []
        self.commits += 1

    def rollback(self):
        self._staged = []
        self.rollbacks += 1


class ClosingSession:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


@pytest.fixture
def repository():
    return InMemoryBookingRepository()


@pytest.fixture
def monday_tool(repository):
    tool = repository.add_tool(name="Haircut", config={"timezone": "UTC"})
    # 2026-10-19 is a Monday; day index 1 in the Sunday-first convention.
    repository.add_template(tool, day_of_week=1, start=time(9, 0), end=time(17, 0))
    return tool


@pytest.fixture
def published_events(monkeypatch, repository):
    """Route the HTTP layer to the in-memory repository and record emitted events."""
    import app.main as main_module

    events = []
    monkeypatch.setattr(main_module, "SessionLocal", ClosingSession)
    monkeypatch.setattr(main_module, "SqlAlchemyBookingRepository", lambda _db: repository)
    monkeypatch.setattr(
        main_module,
        "emit_webhook_event",
        lambda admin_id, event, data, metadata=None, db=None: events.append((admin_id, event, data)),
    )
    return events


@pytest.fixture
def repository_factory():
    return InMemoryBookingRepository


class FakeQuery:
    def __init__(self, session, model):
        self.session = session
        self.model = model

    def all(self):
        return list(self.session.store.get(self.model, []))


class FakeSession:
    def __init__(self, rows=()):
        self.store = {}
        self.commits = 0
        self.rollbacks = 0
        for row in rows:
            self.add(row)

    def query(self, model):
        return FakeQuery(self, model)

    def add(self, row):
        rows = self.store.setdefault(type(row), [])
        if row not in rows:
            rows.append(row)

    def delete(self, row):
        self.store.get(type(row), []).remove(row)

    def flush(self):
        return None

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        return None


@pytest.fixture
def fake_session(monkeypatch):
    """Admin routes read and write through a single in-memory session."""
    import app.main as main_module

    session = FakeSession()
    monkeypatch.setattr(main_module, "SessionLocal", lambda: session)
    monkeypatch.setenv("ENV", "dev")
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    return session
