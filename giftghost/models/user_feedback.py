from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from sqlalchemy import Enum as SAEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from giftghost.database.base import Base, JSONVariant, created_at_column
from giftghost.models.enums import FeedbackType

if TYPE_CHECKING:
    from giftghost.models.ai_session import AISession


class UserFeedback(Base):
    """
    Like/dislike attached to a generation trace.

    Not unique per trace: a second submission adds another row.
    """

    __tablename__ = "user_feedback"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    trace_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    ai_session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ai_sessions.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    session_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    anonymous_id: Mapped[str] = mapped_column(String(64), nullable=False)

    feedback_type: Mapped[FeedbackType] = mapped_column(
        SAEnum(
            FeedbackType,
            native_enum=False,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    feedback_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_snapshot: Mapped[dict[str, Any]] = mapped_column(
        JSONVariant,
        nullable=False,
        default=dict,
    )
    device_type: Mapped[str] = mapped_column(String(16), nullable=False)

    created_at: Mapped[datetime] = created_at_column()

    ai_session: Mapped["AISession"] = relationship(
        "AISession",
        back_populates="feedback",
    )
