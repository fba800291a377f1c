"""Trace lookup and analytics schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from giftghost.models.enums import FeedbackType, SessionStatus


class AISessionResponse(BaseModel):
    """Schema for an AI session row."""

    id: str
    trace_id: str = Field(alias="traceId")
    session_id: str = Field(alias="sessionId")
    anonymous_id: str = Field(alias="anonymousId")
    input_mode: str = Field(alias="inputMode")
    input_preview: str = Field(alias="inputPreview")
    input_length: int = Field(alias="inputLength")
    locale: str
    status: SessionStatus
    persona: str | None = None
    pain_point: str | None = Field(default=None, alias="painPoint")
    obsession: str | None = None
    gift_item: str | None = Field(default=None, alias="giftItem")
    gift_reason: str | None = Field(default=None, alias="giftReason")
    gift_price_range: str | None = Field(default=None, alias="giftPriceRange")
    gift_buy_link: str | None = Field(default=None, alias="giftBuyLink")
    response_time_ms: int | None = Field(default=None, alias="responseTimeMs")
    error_message: str | None = Field(default=None, alias="errorMessage")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class FeedbackRecordResponse(BaseModel):
    id: str
    trace_id: str = Field(alias="traceId")
    feedback_type: FeedbackType = Field(alias="feedbackType")
    feedback_score: int | None = Field(default=None, alias="feedbackScore")
    feedback_reason: str | None = Field(default=None, alias="feedbackReason")
    result_snapshot: dict[str, Any] = Field(default_factory=dict, alias="resultSnapshot")
    device_type: str = Field(alias="deviceType")
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class TrackedEventResponse(BaseModel):
    id: str
    name: str
    properties: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    session_id: str = Field(alias="sessionId")
    anonymous_id: str = Field(alias="anonymousId")
    device_type: str = Field(alias="deviceType")
    browser: str
    os: str

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class FullTraceResponse(BaseModel):
    """Everything recorded for one trace id."""

    ai_session: AISessionResponse = Field(alias="aiSession")
    feedback: FeedbackRecordResponse | None = None
    events: list[TrackedEventResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class FunnelMetricsResponse(BaseModel):
    days: int
    started: int
    processing: int
    completed: int
    failed: int
    with_feedback: int = Field(alias="withFeedback")
    completion_rate: float = Field(alias="completionRate")
    feedback_rate: float = Field(alias="feedbackRate")

    model_config = ConfigDict(populate_by_name=True)


class ModeFeedback(BaseModel):
    likes: int
    dislikes: int


class FeedbackQualityResponse(BaseModel):
    days: int
    total: int
    likes: int
    dislikes: int
    like_rate: float = Field(alias="likeRate")
    average_score: float | None = Field(default=None, alias="averageScore")
    by_input_mode: dict[str, ModeFeedback] = Field(default_factory=dict, alias="byInputMode")

    model_config = ConfigDict(populate_by_name=True)
