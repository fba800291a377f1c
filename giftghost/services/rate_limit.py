"""Daily rate limiting with an in-process fast path.

Two tiers are checked in order:

1. ``WindowCache`` - a per-process map of identity-key -> short window
   state. A cached count at or above the daily limit rejects without a
   database round trip. It is an accelerator only; in a multi-instance
   deployment every instance has its own cache.
2. ``rate_limits`` table - one row per (identity-key, local day), the source
   of truth. Increments are a single conditional UPDATE so concurrent
   requests for the same key can never push the count past the limit.

Counts are consumed at admission time, so a generation that later fails
still uses its slot.
"""

import logging
import threading
import time
from collections.abc import Callable
from datetime import date, datetime, time as dt_time, timedelta
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from giftghost.config import Settings
from giftghost.database.engine import dialect_insert
from giftghost.models.rate_limit import RateLimitCounter
from giftghost.types.governance import Identity, RateLimitResult, WindowState

logger = logging.getLogger(__name__)

# Sweep expired cache entries once the map grows past this size
CACHE_SWEEP_THRESHOLD = 10_000


def local_now() -> datetime:
    """Timezone-aware current time in the server's local zone."""
    return datetime.now().astimezone()


def next_local_midnight(now: datetime) -> datetime:
    """Start of the next calendar day in ``now``'s timezone."""
    tomorrow = now.date() + timedelta(days=1)
    return datetime.combine(tomorrow, dt_time.min, tzinfo=now.tzinfo)


class WindowCache:
    """
    Thread-safe, process-local short-window cache.

    Entries are bound to the calendar day they were written on, so a
    request after local midnight never sees yesterday's count. Lifecycle:
    lives as long as the owning RateLimiter (normally the process);
    ``clear()`` exists for tests and admin resets.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: dict[str, WindowState] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str, today: date, now_ts: float | None = None) -> WindowState | None:
        now_ts = self._clock() if now_ts is None else now_ts
        with self._lock:
            state = self._entries.get(key)
            if state is None:
                return None
            if state.day != today or now_ts > state.window_end:
                del self._entries[key]
                return None
            return WindowState(count=state.count, window_end=state.window_end, day=state.day)

    def put(self, key: str, count: int, today: date, window_end: float) -> None:
        """Record ``count`` for the key; within the same live window the count never goes down."""
        now_ts = self._clock()
        with self._lock:
            current = self._entries.get(key)
            if current and current.day == today and now_ts <= current.window_end:
                count = max(current.count, count)
            self._entries[key] = WindowState(count=count, window_end=window_end, day=today)
            if len(self._entries) > CACHE_SWEEP_THRESHOLD:
                self._sweep(now_ts, today)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _sweep(self, now_ts: float, today: date) -> None:
        stale = [
            key
            for key, state in self._entries.items()
            if state.day != today or now_ts > state.window_end
        ]
        for key in stale:
            del self._entries[key]


class RateLimiter:
    """Per-identity daily limiter (anonymous and authenticated tiers)."""

    def __init__(
        self,
        anonymous_limit: int = 5,
        user_limit: int = 10,
        window_seconds: int = 60,
        fail_open: bool = False,
        cache: WindowCache | None = None,
        now: Callable[[], datetime] = local_now,
    ):
        self.anonymous_limit = anonymous_limit
        self.user_limit = user_limit
        self.window_seconds = window_seconds
        self.fail_open = fail_open
        self._now = now
        self.cache = cache or WindowCache(clock=lambda: self._now().timestamp())

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        return cls(
            anonymous_limit=settings.rate_limit_anonymous_per_day,
            user_limit=settings.rate_limit_user_per_day,
            window_seconds=settings.rate_limit_window_seconds,
            fail_open=settings.rate_limit_fail_open,
        )

    def limit_for(self, identity: Identity) -> int:
        return self.user_limit if identity.is_authenticated else self.anonymous_limit

    def check_and_consume(self, db: Session, identity: Identity) -> RateLimitResult:
        """
        Admit or reject one request for ``identity``, consuming a slot if admitted.

        Never raises; a store failure is resolved by the configured
        fail-open/fail-closed policy and flagged with ``degraded=True``.
        """
        now = self._now()
        today = now.date()
        key = identity.key
        limit = self.limit_for(identity)
        reset_at = next_local_midnight(now)
        window_end = min(now.timestamp() + self.window_seconds, reset_at.timestamp())

        cached = self.cache.get(key, today, now.timestamp())
        if cached and cached.count >= limit:
            logger.info(f"Rate limit hit (cached) for {key}: {cached.count}/{limit}")
            return RateLimitResult(allowed=False, remaining=0, limit=limit, reset_at=reset_at)

        try:
            count = self._read_count(db, key, today)
            if count >= limit:
                self.cache.put(key, count, today, window_end)
                logger.info(f"Rate limit hit for {key}: {count}/{limit}")
                return RateLimitResult(allowed=False, remaining=0, limit=limit, reset_at=reset_at)

            new_count = self._increment(db, key, today, limit, now)
        except SQLAlchemyError as e:
            db.rollback()
            return self._on_store_failure(key, limit, today, window_end, reset_at, cached, e)

        if new_count is None:
            # Another request took the last slot between our read and update
            self.cache.put(key, limit, today, window_end)
            logger.info(f"Rate limit hit (race) for {key}: {limit}/{limit}")
            return RateLimitResult(allowed=False, remaining=0, limit=limit, reset_at=reset_at)

        self.cache.put(key, new_count, today, window_end)
        logger.debug(f"{key} requests today: {new_count}/{limit}")
        return RateLimitResult(
            allowed=True,
            remaining=max(0, limit - new_count),
            limit=limit,
            reset_at=reset_at,
        )

    def peek(self, db: Session, identity: Identity) -> RateLimitResult:
        """Current status for ``identity`` without consuming anything."""
        now = self._now()
        today = now.date()
        key = identity.key
        limit = self.limit_for(identity)
        reset_at = next_local_midnight(now)

        cached = self.cache.get(key, today, now.timestamp())
        if cached:
            return RateLimitResult(
                allowed=cached.count < limit,
                remaining=max(0, limit - cached.count),
                limit=limit,
                reset_at=reset_at,
            )

        try:
            count = self._read_count(db, key, today)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Rate limit store unavailable during peek for {key}: {e}")
            return RateLimitResult(
                allowed=self.fail_open,
                remaining=limit if self.fail_open else 0,
                limit=limit,
                reset_at=reset_at,
                degraded=True,
            )

        return RateLimitResult(
            allowed=count < limit,
            remaining=max(0, limit - count),
            limit=limit,
            reset_at=reset_at,
        )

    def remaining(self, db: Session, identity: Identity) -> int:
        return self.peek(db, identity).remaining

    def _read_count(self, db: Session, key: str, today: date) -> int:
        count = db.execute(
            select(RateLimitCounter.request_count).where(
                RateLimitCounter.key == key,
                RateLimitCounter.date == today,
            )
        ).scalar_one_or_none()
        return count or 0

    def _increment(
        self, db: Session, key: str, today: date, limit: int, now: datetime
    ) -> int | None:
        """
        Atomically add one to today's counter if it is still under ``limit``.

        Returns the new count, or None when the limit was already reached.
        """
        table = RateLimitCounter.__table__

        ensure_row = (
            dialect_insert(db, table)
            .values(
                id=str(uuid4()),
                key=key,
                date=today,
                request_count=0,
                last_request=now,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["key", "date"])
        )
        db.execute(ensure_row)

        new_count = db.execute(
            update(table)
            .where(
                table.c.key == key,
                table.c.date == today,
                table.c.request_count < limit,
            )
            .values(request_count=table.c.request_count + 1, last_request=now)
            .returning(table.c.request_count)
        ).scalar_one_or_none()
        db.commit()
        return new_count

    def _on_store_failure(
        self,
        key: str,
        limit: int,
        today: date,
        window_end: float,
        reset_at: datetime,
        cached: WindowState | None,
        error: Exception,
    ) -> RateLimitResult:
        if not self.fail_open:
            logger.error(f"Rate limit store unavailable for {key}, rejecting (fail-closed): {error}")
            return RateLimitResult(
                allowed=False, remaining=0, limit=limit, reset_at=reset_at, degraded=True
            )

        # Fail open, but still capped by this process's window state
        used = (cached.count if cached else 0) + 1
        self.cache.put(key, used, today, window_end)
        logger.error(
            f"Rate limit store unavailable for {key}, admitting (fail-open) "
            f"{used}/{limit} on local state only: {error}"
        )
        return RateLimitResult(
            allowed=True,
            remaining=max(0, limit - used),
            limit=limit,
            reset_at=reset_at,
            degraded=True,
        )
