"""Feedback schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from giftghost.models.enums import FeedbackType


class FeedbackRequest(BaseModel):
    """Schema for attaching feedback to a trace."""

    trace_id: str = Field(..., min_length=1, max_length=36, alias="traceId")
    feedback_type: FeedbackType = Field(alias="feedbackType")
    feedback_score: int | None = Field(default=None, ge=1, le=5, alias="feedbackScore")
    feedback_reason: str | None = Field(default=None, max_length=2000, alias="feedbackReason")
    result_snapshot: dict[str, Any] = Field(default_factory=dict, alias="resultSnapshot")

    model_config = ConfigDict(populate_by_name=True)


class FeedbackResponse(BaseModel):
    success: bool
