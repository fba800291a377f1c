"""Generation and rate-limit status schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from giftghost.models.enums import InputMode


class GenerateRequest(BaseModel):
    """Schema for a generation request."""

    mode: InputMode
    content: str = Field(..., min_length=1, max_length=50_000)
    locale: str = Field(default="en", min_length=2, max_length=16)


class GiftRecommendation(BaseModel):
    item: str
    reason: str
    buy_link: str = Field(alias="buyLink")
    price_range: str | None = Field(default=None, alias="priceRange")

    model_config = ConfigDict(populate_by_name=True)


class GenerateResponse(BaseModel):
    """
    Outcome of one generation attempt.

    Admission and generation failures are reported here with
    ``success=False`` and an error code, never as an HTTP error.
    """

    success: bool
    persona: str | None = None
    pain_point: str | None = Field(default=None, alias="painPoint")
    obsession: str | None = None
    gift_recommendation: GiftRecommendation | None = Field(
        default=None, alias="giftRecommendation"
    )
    trace_id: str | None = Field(default=None, alias="traceId")

    # Failure details
    error: str | None = None
    message: str | None = None
    limit: int | None = None
    remaining: int | None = None
    reset_at: datetime | None = Field(default=None, alias="resetAt")

    model_config = ConfigDict(populate_by_name=True)


class RateLimitStatusResponse(BaseModel):
    """Read-only limiter status for the caller."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime = Field(alias="resetAt")
    authenticated: bool
    degraded: bool = False

    model_config = ConfigDict(populate_by_name=True)
