from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import CheckConstraint, Enum as SAEnum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from giftghost.database.base import Base, created_at_column, updated_at_column
from giftghost.models.enums import SessionStatus

if TYPE_CHECKING:
    from giftghost.models.user_feedback import UserFeedback


class AISession(Base):
    """
    One generation attempt, keyed by trace_id.

    Created as 'processing' when the attempt begins and moved exactly once
    to 'completed' or 'failed'. A retried generation gets a new trace_id.
    """

    __tablename__ = "ai_sessions"
    __table_args__ = (
        CheckConstraint(
            "response_time_ms IS NULL OR response_time_ms >= 0",
            name="ck_ai_sessions_response_time",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    trace_id: Mapped[str] = mapped_column(
        String(36),
        unique=True,
        index=True,
        nullable=False,
    )
    session_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    anonymous_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)

    # Input
    input_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    input_content: Mapped[str] = mapped_column(Text, nullable=False)
    input_preview: Mapped[str] = mapped_column(String(200), nullable=False)
    input_length: Mapped[int] = mapped_column(Integer, nullable=False)
    locale: Mapped[str] = mapped_column(String(16), nullable=False)

    status: Mapped[SessionStatus] = mapped_column(
        SAEnum(
            SessionStatus,
            native_enum=False,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=SessionStatus.PROCESSING,
    )

    # Result (set once, on completion)
    persona: Mapped[str | None] = mapped_column(Text, nullable=True)
    pain_point: Mapped[str | None] = mapped_column(Text, nullable=True)
    obsession: Mapped[str | None] = mapped_column(Text, nullable=True)
    gift_item: Mapped[str | None] = mapped_column(Text, nullable=True)
    gift_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    gift_price_range: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gift_buy_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = created_at_column()
    updated_at: Mapped[datetime] = updated_at_column()

    feedback: Mapped[list["UserFeedback"]] = relationship(
        "UserFeedback",
        back_populates="ai_session",
        cascade="all, delete-orphan",
    )
