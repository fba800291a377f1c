"""Tracking event schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TrackEventIn(BaseModel):
    """One event as sent by a tracker."""

    name: str = Field(min_length=1, max_length=128)
    properties: dict[str, Any] | None = None
    timestamp: int = Field(description="Client clock, epoch milliseconds")
    session_id: str = Field(default="", alias="sessionId", max_length=64)
    anonymous_id: str = Field(default="", alias="anonymousId", max_length=64)
    trace_id: str | None = Field(default=None, alias="traceId", max_length=36)
    user_agent: str | None = Field(default=None, alias="userAgent")

    model_config = ConfigDict(populate_by_name=True)


class TrackRequest(BaseModel):
    """POST /api/track body. Count limits are enforced by the route (400, not 422)."""

    events: list[TrackEventIn] | None = None


class TrackResponse(BaseModel):
    success: bool
    count: int


class TrackServiceInfo(BaseModel):
    service: str
    version: str
    endpoints: dict[str, str]
