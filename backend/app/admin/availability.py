from __future__ import annotations

import logging
from datetime import time
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.orm import Session

from app.db.models import AvailabilityTemplate, Tool

logger = logging.getLogger("mchattools.admin.availability")

TIME_OF_DAY_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class CreateAvailabilityArgs(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str = Field(pattern=TIME_OF_DAY_PATTERN)
    end_time: str = Field(pattern=TIME_OF_DAY_PATTERN)
    slot_duration: int = Field(default=30, gt=0, le=24 * 60)
    active: bool = True

    @model_validator(mode="after")
    def validate_window(self) -> "CreateAvailabilityArgs":
        if parse_time_of_day(self.start_time) >= parse_time_of_day(self.end_time):
            raise ValueError("start_time must be before end_time.")
        return self


class UpdateAvailabilityArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: str | None = Field(default=None, pattern=TIME_OF_DAY_PATTERN)
    end_time: str | None = Field(default=None, pattern=TIME_OF_DAY_PATTERN)
    slot_duration: int | None = Field(default=None, gt=0, le=24 * 60)
    active: bool | None = None


def parse_time_of_day(value: str) -> time:
    hour, minute = value.split(":")
    return time(hour=int(hour), minute=int(minute))


def list_templates(db: Session, tool: Tool) -> list[AvailabilityTemplate]:
    templates = [t for t in db.query(AvailabilityTemplate).all() if t.tool_id == tool.id]
    return sorted(templates, key=lambda t: (t.day_of_week, t.start_time))


def create_template(db: Session, tool: Tool, args: CreateAvailabilityArgs) -> AvailabilityTemplate:
    template = AvailabilityTemplate(
        id=str(uuid4()),
        tool_id=tool.id,
        day_of_week=args.day_of_week,
        start_time=parse_time_of_day(args.start_time),
        end_time=parse_time_of_day(args.end_time),
        slot_duration=args.slot_duration,
        active=args.active,
    )
    _warn_on_uneven_window(template)
    db.add(template)
    db.commit()
    return template


def update_template(
    db: Session,
    tool: Tool,
    template_id: str,
    args: UpdateAvailabilityArgs,
) -> AvailabilityTemplate | None:
    template = _find_template(db, tool=tool, template_id=template_id)
    if template is None:
        return None

    patch = args.model_dump(exclude_unset=True)
    new_start = parse_time_of_day(patch["start_time"]) if patch.get("start_time") else template.start_time
    new_end = parse_time_of_day(patch["end_time"]) if patch.get("end_time") else template.end_time
    if new_start >= new_end:
        raise ValueError("start_time must be before end_time.")

    for field, value in patch.items():
        if value is None:
            continue
        if field in {"start_time", "end_time"}:
            value = parse_time_of_day(value)
        setattr(template, field, value)

    _warn_on_uneven_window(template)
    db.commit()
    return template


def delete_template(db: Session, tool: Tool, template_id: str) -> bool:
    template = _find_template(db, tool=tool, template_id=template_id)
    if template is None:
        return False
    db.delete(template)
    db.commit()
    return True


def serialize_template(template: AvailabilityTemplate) -> dict[str, Any]:
    return {
        "id": template.id,
        "tool_id": template.tool_id,
        "day_of_week": template.day_of_week,
        "start_time": template.start_time.strftime("%H:%M"),
        "end_time": template.end_time.strftime("%H:%M"),
        "slot_duration": template.slot_duration,
        "active": template.active,
    }


def _find_template(db: Session, tool: Tool, template_id: str) -> AvailabilityTemplate | None:
    for template in db.query(AvailabilityTemplate).all():
        if template.id == template_id and template.tool_id == tool.id:
            return template
    return None


def _warn_on_uneven_window(template: AvailabilityTemplate) -> None:
    window_minutes = (
        (template.end_time.hour * 60 + template.end_time.minute)
        - (template.start_time.hour * 60 + template.start_time.minute)
    )
    if window_minutes % template.slot_duration:
        logger.warning(
            "Availability window of %s minutes is not a multiple of slot_duration=%s; "
            "the trailing partial slot will never be offered. template_id=%s",
            window_minutes,
            template.slot_duration,
            template.id,
        )
