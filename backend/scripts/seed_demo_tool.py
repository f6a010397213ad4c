from datetime import time
from uuid import uuid4

from app.db.models import Admin, AvailabilityTemplate, Tool
from app.db.session import SessionLocal

WEEKDAYS = (1, 2, 3, 4, 5)


def seed_demo_tool() -> None:
    session = SessionLocal()
    try:
        admin = session.query(Admin).filter(Admin.username == "demo").first()
        if admin is None:
            admin = Admin(id=str(uuid4()), username="demo", email="demo@example.com")
            session.add(admin)
            session.flush()

        tool = (
            session.query(Tool)
            .filter(Tool.admin_id == admin.id, Tool.name == "Demo Booking")
            .first()
        )
        if tool is not None:
            print(f"Demo tool already exists with id={tool.id}")
            session.commit()
            return

        tool = Tool(
            id=str(uuid4()),
            admin_id=admin.id,
            name="Demo Booking",
            type="booking",
            description="30-minute appointments, Monday to Friday.",
            active=True,
            config={"timezone": "America/New_York"},
        )
        session.add(tool)
        for day in WEEKDAYS:
            session.add(
                AvailabilityTemplate(
                    id=str(uuid4()),
                    tool_id=tool.id,
                    day_of_week=day,
                    start_time=time(9, 0),
                    end_time=time(17, 0),
                    slot_duration=30,
                    active=True,
                )
            )
        session.commit()
        print(f"Created demo tool with id={tool.id} for admin_id={admin.id}")
    finally:
        session.close()


if __name__ == "__main__":
    seed_demo_tool()
