"""Daily request counters for rate limiting."""

import datetime as dt
from uuid import uuid4

from sqlalchemy import Date, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from giftghost.database.base import Base, created_at_column, utc_now


class RateLimitCounter(Base):
    """
    One row per (identity-key, local calendar day).

    request_count only grows within a day; the next day starts a new row.
    Rows are never deleted here.
    """

    __tablename__ = "rate_limits"
    __table_args__ = (
        UniqueConstraint("key", "date", name="uq_rate_limits_key_date"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    key: Mapped[str] = mapped_column(
        String(255),
        index=True,
        nullable=False,
    )
    date: Mapped[dt.date] = mapped_column(
        Date,
        nullable=False,
    )
    request_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_request: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )

    created_at: Mapped[dt.datetime] = created_at_column()
