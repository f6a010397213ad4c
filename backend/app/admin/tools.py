from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session

from app.bookings.errors import ToolOwnershipError
from app.bookings.tool_config import parse_tool_config
from app.db.models import Admin, AvailabilityTemplate, Booking, Tool


class CreateToolArgs(BaseModel):
    name: str = Field(min_length=1)
    type: str = Field(min_length=1)
    description: str | None = None
    active: bool = True
    config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("config")
    @classmethod
    def validate_config(cls, value: dict[str, Any]) -> dict[str, Any]:
        return parse_tool_config(value).model_dump(exclude_none=True)


class UpdateToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    type: str | None = Field(default=None, min_length=1)
    description: str | None = None
    active: bool | None = None
    config: dict[str, Any] | None = None

    @field_validator("config")
    @classmethod
    def validate_config(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        if value is None:
            return None
        return parse_tool_config(value).model_dump(exclude_none=True)


def find_admin(db: Session, admin_id: str) -> Admin | None:
    for admin in db.query(Admin).all():
        if admin.id == admin_id:
            return admin
    return None


def create_tool(db: Session, admin: Admin, args: CreateToolArgs) -> Tool:
    tool = Tool(
        id=str(uuid4()),
        admin_id=admin.id,
        name=args.name,
        type=args.type,
        description=args.description,
        active=args.active,
        config=args.config,
    )
    db.add(tool)
    db.commit()
    return tool


def list_tools(db: Session, admin_id: str, tool_type: str | None = None) -> list[Tool]:
    tools = [
        tool
        for tool in db.query(Tool).all()
        if tool.admin_id == admin_id and (tool_type is None or tool.type == tool_type)
    ]
    return sorted(tools, key=_created_at_sort_key, reverse=True)


def list_active_tools(db: Session) -> list[Tool]:
    return sorted(
        (tool for tool in db.query(Tool).all() if tool.active),
        key=lambda tool: tool.name,
    )


def get_owned_tool(db: Session, admin_id: str, tool_id: str) -> Tool | None:
    tool = find_tool(db, tool_id=tool_id)
    if tool is None:
        return None
    if tool.admin_id != admin_id:
        raise ToolOwnershipError("Tool belongs to another admin.")
    return tool


def update_tool(db: Session, admin_id: str, tool_id: str, args: UpdateToolArgs) -> Tool | None:
    tool = get_owned_tool(db, admin_id=admin_id, tool_id=tool_id)
    if tool is None:
        return None

    for field, value in args.model_dump(exclude_unset=True).items():
        if field == "config" and value is None:
            value = {}
        setattr(tool, field, value)
    tool.updated_at = datetime.now(timezone.utc)
    db.commit()
    return tool


def delete_tool(db: Session, admin_id: str, tool_id: str) -> bool:
    tool = get_owned_tool(db, admin_id=admin_id, tool_id=tool_id)
    if tool is None:
        return False

    # Templates and bookings go with their tool.
    for template in db.query(AvailabilityTemplate).all():
        if template.tool_id == tool.id:
            db.delete(template)
    for booking in db.query(Booking).all():
        if booking.tool_id == tool.id:
            db.delete(booking)
    db.delete(tool)
    db.commit()
    return True


def serialize_tool(tool: Tool, db: Session | None = None) -> dict[str, Any]:
    payload = {
        "id": tool.id,
        "name": tool.name,
        "type": tool.type,
        "description": tool.description,
        "active": tool.active,
        "config": tool.config or {},
        "created_at": tool.created_at.isoformat() if tool.created_at else None,
    }
    if db is not None:
        payload["bookings_count"] = sum(
            1 for booking in db.query(Booking).all() if booking.tool_id == tool.id
        )
        payload["availabilities_count"] = sum(
            1 for template in db.query(AvailabilityTemplate).all() if template.tool_id == tool.id
        )
    return payload


def find_tool(db: Session, tool_id: str) -> Tool | None:
    for tool in db.query(Tool).all():
        if tool.id == tool_id:
            return tool
    return None


def _created_at_sort_key(tool: Tool) -> datetime:
    created_at = tool.created_at or datetime.min.replace(tzinfo=timezone.utc)
    if created_at.tzinfo is None:
        return created_at.replace(tzinfo=timezone.utc)
    return created_at
