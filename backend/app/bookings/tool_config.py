from __future__ import annotations

from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.config import default_timezone


MIN_BOOKING_DURATION_MINUTES = 15
MAX_BOOKING_DURATION_MINUTES = 480


class ToolConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    timezone: str = Field(default_factory=default_timezone)
    min_duration_minutes: int = Field(
        default=MIN_BOOKING_DURATION_MINUTES,
        ge=MIN_BOOKING_DURATION_MINUTES,
        le=MAX_BOOKING_DURATION_MINUTES,
    )
    max_duration_minutes: int = Field(
        default=MAX_BOOKING_DURATION_MINUTES,
        ge=MIN_BOOKING_DURATION_MINUTES,
        le=MAX_BOOKING_DURATION_MINUTES,
    )
    manychat_flow_id: str | None = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @model_validator(mode="after")
    def validate_duration_bounds(self) -> "ToolConfig":
        if self.min_duration_minutes > self.max_duration_minutes:
            raise ValueError("min_duration_minutes must not exceed max_duration_minutes.")
        return self

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def parse_tool_config(raw_config: dict[str, Any] | None) -> ToolConfig:
    return ToolConfig.model_validate(raw_config or {})
