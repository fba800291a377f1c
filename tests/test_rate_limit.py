"""Tests for the two-tier daily rate limiter."""

import threading
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, event, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from giftghost.database.base import Base
from giftghost.models.rate_limit import RateLimitCounter
from giftghost.services.rate_limit import RateLimiter, WindowCache, next_local_midnight
from giftghost.types.governance import Identity, IdentityKind

LOCAL_TZ = timezone(timedelta(hours=8))


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 14, 10, 30, tzinfo=LOCAL_TZ))


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter(anonymous_limit=5, user_limit=10, now=clock)


@pytest.fixture
def anon() -> Identity:
    return Identity(kind=IdentityKind.ANONYMOUS, ip="203.0.113.7", anonymous_id="aid-1")


@pytest.fixture
def user() -> Identity:
    return Identity(kind=IdentityKind.AUTHENTICATED, user_id="user-1")


def broken_session() -> MagicMock:
    db = MagicMock(spec=Session)
    db.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
    return db


class TestNextLocalMidnight:
    def test_keeps_timezone(self):
        now = datetime(2026, 12, 31, 23, 59, tzinfo=LOCAL_TZ)
        assert next_local_midnight(now) == datetime(2027, 1, 1, tzinfo=LOCAL_TZ)


class TestWindowCache:
    """Test the process-local fast path."""

    def test_expires_after_window(self):
        cache = WindowCache(clock=lambda: 100.0)
        cache.put("k", 3, date(2026, 3, 14), window_end=160.0)

        assert cache.get("k", date(2026, 3, 14), now_ts=150.0).count == 3
        assert cache.get("k", date(2026, 3, 14), now_ts=161.0) is None
        assert len(cache) == 0

    def test_bound_to_day(self):
        cache = WindowCache(clock=lambda: 100.0)
        cache.put("k", 5, date(2026, 3, 14), window_end=1_000.0)

        assert cache.get("k", date(2026, 3, 15), now_ts=101.0) is None

    def test_count_never_decreases_within_window(self):
        cache = WindowCache(clock=lambda: 100.0)
        today = date(2026, 3, 14)
        cache.put("k", 4, today, window_end=160.0)
        cache.put("k", 2, today, window_end=160.0)

        assert cache.get("k", today, now_ts=101.0).count == 4


class TestCheckAndConsume:
    """Test admission decisions against the persisted counter."""

    def test_anonymous_end_to_end(self, session, limiter, anon, clock):
        """Five admissions count down to zero, the sixth is rejected until midnight."""
        remaining = []
        for _ in range(5):
            result = limiter.check_and_consume(session, anon)
            assert result.allowed
            assert result.limit == 5
            remaining.append(result.remaining)

        assert remaining == [4, 3, 2, 1, 0]

        rejected = limiter.check_and_consume(session, anon)
        assert not rejected.allowed
        assert rejected.remaining == 0
        assert rejected.limit == 5
        assert rejected.reset_at == datetime(2026, 3, 15, tzinfo=LOCAL_TZ)
        assert not rejected.degraded

    def test_rejection_does_not_increment(self, session, limiter, anon):
        for _ in range(8):
            limiter.check_and_consume(session, anon)

        row = session.execute(
            select(RateLimitCounter).where(RateLimitCounter.key == anon.key)
        ).scalar_one()
        assert row.request_count == 5

    def test_rejects_from_store_when_cache_is_cold(self, session, limiter, anon):
        for _ in range(5):
            limiter.check_and_consume(session, anon)
        limiter.cache.clear()

        result = limiter.check_and_consume(session, anon)
        assert not result.allowed

    def test_cached_rejection_skips_store(self, session, limiter, anon):
        for _ in range(6):
            limiter.check_and_consume(session, anon)

        # Counter at the limit in cache: the store is never consulted
        result = limiter.check_and_consume(broken_session(), anon)
        assert not result.allowed
        assert not result.degraded

    def test_authenticated_tier(self, session, limiter, user):
        results = [limiter.check_and_consume(session, user) for _ in range(11)]

        assert sum(r.allowed for r in results) == 10
        assert results[0].remaining == 9
        assert results[0].limit == 10

    def test_keys_are_independent(self, session, limiter, anon):
        other = Identity(kind=IdentityKind.ANONYMOUS, ip="198.51.100.1", anonymous_id="aid-2")
        for _ in range(5):
            limiter.check_and_consume(session, anon)

        assert limiter.check_and_consume(session, other).remaining == 4

    def test_day_rollover(self, session, limiter, anon, clock):
        for _ in range(6):
            limiter.check_and_consume(session, anon)
        assert not limiter.check_and_consume(session, anon).allowed

        clock.now = datetime(2026, 3, 15, 0, 0, 5, tzinfo=LOCAL_TZ)

        status = limiter.peek(session, anon)
        assert status.allowed
        assert status.remaining == 5

        result = limiter.check_and_consume(session, anon)
        assert result.allowed
        assert result.remaining == 4
        assert result.reset_at == datetime(2026, 3, 16, tzinfo=LOCAL_TZ)

        rows = session.execute(
            select(RateLimitCounter).where(RateLimitCounter.key == anon.key)
        ).scalars().all()
        assert sorted(r.request_count for r in rows) == [1, 5]


class TestPeek:
    def test_peek_does_not_consume(self, session, limiter, anon):
        for _ in range(3):
            status = limiter.peek(session, anon)
            assert status.allowed
            assert status.remaining == 5

        limiter.check_and_consume(session, anon)
        assert limiter.remaining(session, anon) == 4

    def test_peek_after_exhaustion(self, session, limiter, anon):
        for _ in range(5):
            limiter.check_and_consume(session, anon)

        status = limiter.peek(session, anon)
        assert not status.allowed
        assert status.remaining == 0


class TestStoreFailure:
    """Test the fail-closed default and the fail-open option."""

    def test_fail_closed_by_default(self, limiter, anon):
        db = broken_session()

        result = limiter.check_and_consume(db, anon)

        assert not result.allowed
        assert result.degraded
        db.rollback.assert_called_once()

    def test_fail_open_admits_within_local_window(self, clock, anon):
        limiter = RateLimiter(anonymous_limit=5, fail_open=True, now=clock)
        db = broken_session()

        results = [limiter.check_and_consume(db, anon) for _ in range(6)]

        assert all(r.degraded for r in results[:5])
        assert [r.allowed for r in results] == [True] * 5 + [False]
        # The sixth is rejected by the local window before the store is tried
        assert db.execute.call_count == 5
        assert results[0].remaining == 4

    def test_peek_reports_degraded(self, limiter, anon):
        status = limiter.peek(broken_session(), anon)
        assert status.degraded
        assert not status.allowed


class TestConcurrency:
    """Test that concurrent admissions for one key never overshoot the limit."""

    def test_limit_plus_five_simultaneous_requests(self, tmp_path, clock, anon):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'limits.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        # Take the write lock at BEGIN so SQLite serializes writers instead of failing them
        @event.listens_for(engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        Base.metadata.create_all(engine)
        factory = sessionmaker(bind=engine, expire_on_commit=False)
        limiter = RateLimiter(anonymous_limit=5, now=clock)

        barrier = threading.Barrier(10)
        results = []
        results_lock = threading.Lock()

        def worker():
            db = factory()
            try:
                barrier.wait()
                result = limiter.check_and_consume(db, anon)
            finally:
                db.close()
            with results_lock:
                results.append(result)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert len(results) == 10
        assert not any(r.degraded for r in results)
        assert sum(r.allowed for r in results) == 5
        assert sum(not r.allowed for r in results) == 5

        with factory() as db:
            count = db.execute(
                select(RateLimitCounter.request_count).where(RateLimitCounter.key == anon.key)
            ).scalar_one()
        assert count == 5
        engine.dispose()
