"""Delivery backends for the event tracker.

A transport either delivers a whole batch or raises TransportError; the
tracker owns retry (by requeueing), so transports never retry themselves.
"""

import asyncio
import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from giftghost.errors import TransportError
from giftghost.schemas.tracking import TrackEventIn
from giftghost.services.tracking.ingestion import store_events

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send(self, events: list[dict[str, Any]]) -> None:
        """Deliver one batch or raise TransportError."""
        ...

    def send_nowait(self, events: list[dict[str, Any]]) -> None:
        """Best-effort synchronous send used at process exit. Never raises."""
        ...


class HttpTransport:
    """POSTs ``{"events": [...]}`` to the ingestion endpoint."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 10.0,
        exit_timeout: float = 1.0,
        client_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.exit_timeout = exit_timeout
        self._client_transport = client_transport

    async def send(self, events: list[dict[str, Any]]) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._client_transport
            ) as client:
                response = await client.post(self.endpoint, json={"events": events})
        except httpx.HTTPError as e:
            raise TransportError(f"Tracking endpoint unreachable: {e}") from e

        if response.is_error:
            raise TransportError(
                f"Tracking endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

    def send_nowait(self, events: list[dict[str, Any]]) -> None:
        try:
            httpx.post(self.endpoint, json={"events": events}, timeout=self.exit_timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Exit flush of {len(events)} events dropped: {e}")


class DatabaseTransport:
    """Writes batches straight into tracking_events (for trackers living in the API process)."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _write(self, events: list[dict[str, Any]]) -> int:
        parsed: list[TrackEventIn] = []
        for event in events:
            try:
                parsed.append(TrackEventIn.model_validate(event))
            except ValidationError as e:
                # Retrying cannot fix a malformed event
                logger.warning(f"Dropping malformed tracking event {event.get('name')!r}: {e}")
        if not parsed:
            return 0

        db: Session = self._session_factory()
        try:
            return store_events(db, parsed)
        except SQLAlchemyError as e:
            db.rollback()
            raise TransportError(f"Tracking store unavailable: {e}") from e
        finally:
            db.close()

    async def send(self, events: list[dict[str, Any]]) -> None:
        await asyncio.to_thread(self._write, events)

    def send_nowait(self, events: list[dict[str, Any]]) -> None:
        try:
            self._write(events)
        except TransportError as e:
            logger.debug(f"Exit flush of {len(events)} events dropped: {e}")
