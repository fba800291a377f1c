import json
import os

# Keep the app's default engine off the filesystem during tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from giftghost.database.base import Base
from giftghost.errors import TransportError


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key enforcement in SQLite."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


from giftghost.models import AISession, RateLimitCounter, TrackingEvent, UserFeedback

# Ensure all models are imported so they're registered with Base.metadata
__all__ = [
    "AISession",
    "RateLimitCounter",
    "TrackingEvent",
    "UserFeedback",
]

COMPLETION_PAYLOAD = {
    "persona": "The Self-Sacrificing Tinkerer",
    "pain_point": "Hasn't relaxed in years.",
    "obsession": "Restoring a 1967 Mustang in the garage.",
    "gift_recommendation": {
        "item": "Embroidered restoration shop apron",
        "reason": "Something purely for his passion.",
        "buy_link": "https://www.google.com/search?q=restoration+apron",
        "price_range": "$35-60",
    },
}


class FakeTransport:
    """Records batches instead of delivering them; ``fail`` simulates a network error."""

    def __init__(self):
        self.batches: list[list[dict]] = []
        self.nowait_batches: list[list[dict]] = []
        self.fail = False

    @property
    def events(self) -> list[dict]:
        return [event for batch in self.batches for event in batch]

    async def send(self, events):
        if self.fail:
            raise TransportError("simulated network error")
        self.batches.append(list(events))

    def send_nowait(self, events):
        self.nowait_batches.append(list(events))


class FakeCompletion:
    """Completion service returning a fixed payload, or raising when ``error`` is set."""

    def __init__(self, payload: dict | str | None = None):
        self.payload = COMPLETION_PAYLOAD if payload is None else payload
        self.error: Exception | None = None
        self.calls: list[tuple[str, str]] = []

    async def generate(self, prompt: str, content: str) -> str:
        self.calls.append((prompt, content))
        if self.error:
            raise self.error
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload)


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine for testing.

    Uses StaticPool to ensure all connections share the same in-memory database.
    Without this, each connection would get a fresh database without tables.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    # Enable foreign key enforcement in SQLite
    event.listen(engine, "connect", _set_sqlite_pragma)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
def session(session_factory) -> Session:
    """Create a test database session."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fake_completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def tracker(fake_transport):
    from giftghost.services.tracking import ServerTracker

    return ServerTracker(fake_transport, batch_size=10, flush_interval=3600)


@pytest.fixture
def trace_manager(tracker):
    from giftghost.services.trace import TraceManager

    return TraceManager(tracker)


@pytest.fixture
def services(session_factory, tracker, fake_completion):
    from giftghost.config import Settings
    from giftghost.dependencies import AppServices

    return AppServices.build(
        Settings(),
        session_factory,
        tracker=tracker,
        completion=fake_completion,
    )


@pytest.fixture
def client(session_factory, services) -> TestClient:
    """
    Create a FastAPI test client with in-memory database.

    Services are injected on app.state before startup so the lifespan
    reuses them instead of building real ones.
    """
    from giftghost.database import session as session_module
    from giftghost.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    # Override the get_db function that routers use
    app.dependency_overrides[session_module.get_db] = override_get_db
    app.state.services = services

    with TestClient(app) as client:
        yield client

    # Clear overrides after test
    app.dependency_overrides.clear()
    del app.state.services
