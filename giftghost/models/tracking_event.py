from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from giftghost.database.base import Base, JSONVariant, utc_now


class TrackingEvent(Base):
    """
    Append-only analytics event.

    Delivery is at-least-once, so duplicates are expected; there is no
    uniqueness constraint and rows are never updated.
    """

    __tablename__ = "tracking_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    name: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    properties: Mapped[dict[str, Any]] = mapped_column(
        JSONVariant,
        nullable=False,
        default=dict,
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    anonymous_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    trace_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)

    # Request metadata
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    device_type: Mapped[str] = mapped_column(String(16), nullable=False)
    browser: Mapped[str] = mapped_column(String(32), nullable=False)
    os: Mapped[str] = mapped_column(String(32), nullable=False)
    ip_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
