"""Pydantic models for the event being synced and the created remote event."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import DEFAULT_TIME_ZONE


def _ensure_timezone(value: datetime) -> datetime:
    """Default naive datetimes to UTC so Google accepts them."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EventSpec(BaseModel):
    """Minimal description of the single event to create."""

    model_config = ConfigDict(frozen=True)

    summary: str = Field(min_length=1, description="Human-readable title for the event.")
    start: datetime = Field(description="Event start. Naive values are assumed to be in UTC.")
    end: datetime = Field(description="Event end. Naive values are assumed to be in UTC.")
    description: str | None = Field(default="", description="Optional description.")

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_datetime(cls, value: Any) -> Any:
        if isinstance(value, str) and value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return value


def _event_time(value: datetime, time_zone: str) -> dict[str, str]:
    return {
        "dateTime": _ensure_timezone(value).isoformat(),
        "timeZone": time_zone,
    }


def build_event(
    spec: EventSpec,
    *,
    time_zone: str = DEFAULT_TIME_ZONE,
    swap_boundaries: bool = False,
) -> dict[str, Any]:
    """
    Convert an :class:`EventSpec` into a Calendar v3 ``events.insert`` body.

    Args:
        spec: The event to send.
        time_zone: IANA zone attached to both boundaries.
        swap_boundaries: Send ``spec.end`` as the remote start and ``spec.start``
            as the remote end, as older releases of this tool did.
    """
    start, end = (spec.end, spec.start) if swap_boundaries else (spec.start, spec.end)
    return {
        "summary": spec.summary,
        "description": spec.description,
        "start": _event_time(start, time_zone),
        "end": _event_time(end, time_zone),
    }


class CreatedEvent(BaseModel):
    """The parts of an ``events.insert`` response the sync reports."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    html_link: str | None = Field(default=None, alias="htmlLink")
    summary: str | None = None
    status: str | None = None
