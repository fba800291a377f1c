"""Batched, at-least-once event tracker.

``track()`` is emit-and-continue: it sanitizes and enqueues synchronously,
and when the queue reaches ``batch_size`` it schedules a flush on the
running event loop and returns that task. Called from a worker thread, it
hands the flush to the loop the tracker was started on instead. Callers
may ignore the task; delivery failures of any kind are logged and the
undelivered events go back to the front of the queue, never raised. Because of that requeue, the same event can be
delivered more than once.
"""

from __future__ import annotations

import asyncio
import atexit
import logging
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

from giftghost.config import Settings
from giftghost.errors import TransportError
from giftghost.services.tracking.ingestion import MAX_EVENTS_PER_REQUEST
from giftghost.services.tracking.sanitize import sanitize_properties
from giftghost.services.tracking.transport import Transport

logger = logging.getLogger(__name__)


class Tracker:
    """Shared queue/flush machinery for the server and client trackers."""

    default_session_id = "server"
    default_anonymous_id = "unknown"

    def __init__(
        self,
        transport: Transport,
        batch_size: int = 10,
        flush_interval: float = 5.0,
        max_queue_size: int = 1000,
    ):
        self.transport = transport
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_queue_size = max_queue_size

        self._queue: deque[dict[str, Any]] = deque()
        self._lock = threading.Lock()
        self._timer_task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[asyncio.Task] = set()
        self.dropped_count = 0

    @property
    def queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    def snapshot(self) -> list[dict[str, Any]]:
        """Copy of the queued events, oldest first."""
        with self._lock:
            return list(self._queue)

    def track(
        self,
        name: str,
        properties: dict[str, Any] | None = None,
        *,
        session_id: str | None = None,
        anonymous_id: str | None = None,
        trace_id: str | None = None,
    ) -> Optional[asyncio.Task]:
        """Queue one event. Returns the flush task if this event filled a batch."""
        event: dict[str, Any] = {
            "name": name,
            "properties": sanitize_properties(properties),
            "timestamp": int(time.time() * 1000),
            "sessionId": session_id or self.default_session_id,
            "anonymousId": anonymous_id or self.default_anonymous_id,
        }
        if trace_id:
            event["traceId"] = trace_id

        with self._lock:
            self._queue.append(event)
            self._enforce_cap()
            should_flush = len(self._queue) >= self.batch_size

        logger.debug(f"Event queued: {name}")
        if should_flush:
            return self._schedule_flush()
        return None

    async def flush(self) -> int:
        """
        Send everything queued. Returns the number of events delivered.

        The queue is taken as one batch and sent in request-sized chunks. On
        the first failed chunk, that chunk and everything after it go back
        to the front of the queue in their original order.
        """
        with self._lock:
            batch = list(self._queue)
            self._queue.clear()

        if not batch:
            return 0

        sent = 0
        try:
            for start in range(0, len(batch), MAX_EVENTS_PER_REQUEST):
                chunk = batch[start : start + MAX_EVENTS_PER_REQUEST]
                await self.transport.send(chunk)
                sent += len(chunk)
        except asyncio.CancelledError:
            self._requeue(batch[sent:])
            logger.warning(f"Tracking flush cancelled, {len(batch) - sent} events requeued")
            raise
        except TransportError as e:
            self._requeue(batch[sent:])
            logger.warning(f"Tracking flush failed, {len(batch) - sent} events requeued: {e}")
            return sent
        except Exception as e:
            self._requeue(batch[sent:])
            logger.error(
                f"Tracking flush error, {len(batch) - sent} events requeued: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            return sent

        logger.debug(f"Events flushed: {sent}")
        return sent

    def start(self) -> None:
        """Start periodic flushing on the running event loop."""
        if self._timer_task and not self._timer_task.done():
            return
        self._loop = asyncio.get_running_loop()
        self._timer_task = self._loop.create_task(self._run_timer())

    async def stop(self) -> None:
        """Stop periodic flushing and make a final flush attempt."""
        if self._timer_task:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.flush()

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            try:
                await self.flush()
            except Exception as e:
                logger.error(f"Periodic tracking flush failed: {e}", exc_info=True)

    def _schedule_flush(self) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            # Worker thread: hand the flush to the loop the timer runs on
            if self._loop is not None and self._loop.is_running():
                self._loop.call_soon_threadsafe(self._spawn_flush)
            else:
                logger.debug("No running event loop, deferring flush")
            return None
        return self._spawn_flush()

    def _spawn_flush(self) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.flush())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _requeue(self, events: list[dict[str, Any]]) -> None:
        with self._lock:
            self._queue.extendleft(reversed(events))
            self._enforce_cap()

    def _enforce_cap(self) -> None:
        # Caller holds self._lock
        overflow = len(self._queue) - self.max_queue_size
        if overflow <= 0:
            return
        for _ in range(overflow):
            self._queue.popleft()
        self.dropped_count += overflow
        logger.warning(
            f"Tracking queue over {self.max_queue_size} events, dropped {overflow} oldest"
        )


class ServerTracker(Tracker):
    """
    Tracker for code running inside request handlers.

    Session and anonymous ids come from each request's cookies and are
    passed per call; there is no exit hook.
    """

    @classmethod
    def from_settings(cls, settings: Settings, transport: Transport) -> "ServerTracker":
        return cls(
            transport,
            batch_size=settings.tracking_batch_size,
            flush_interval=settings.tracking_flush_interval_seconds,
            max_queue_size=settings.tracking_max_queue_size,
        )


class FileIdStore:
    """Keeps a long-lived anonymous device id in a small file."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def get_or_create_anonymous_id(self) -> str:
        try:
            existing = self.path.read_text(encoding="utf-8").strip()
            if existing:
                return existing
        except FileNotFoundError:
            pass

        anonymous_id = str(uuid4())
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(anonymous_id, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not persist anonymous id to {self.path}: {e}")
        return anonymous_id


class ClientTracker(Tracker):
    """
    Tracker for a standalone client process.

    Owns its session id (new per process) and anonymous id (persisted via
    the id store), and can register an exit hook that hands whatever is
    still queued to the transport's fire-and-forget send, since the flush
    timer will not run again.
    """

    def __init__(
        self,
        transport: Transport,
        id_store: FileIdStore | None = None,
        **kwargs: Any,
    ):
        super().__init__(transport, **kwargs)
        self.session_id = str(uuid4())
        self.anonymous_id = (
            id_store.get_or_create_anonymous_id() if id_store else str(uuid4())
        )
        self.default_session_id = self.session_id
        self.default_anonymous_id = self.anonymous_id
        self._exit_hook_registered = False

    def session_info(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "anonymousId": self.anonymous_id,
            "queueLength": self.queue_length,
        }

    def register_exit_hook(self) -> None:
        if self._exit_hook_registered:
            return
        atexit.register(self.flush_on_exit)
        self._exit_hook_registered = True

    def flush_on_exit(self) -> None:
        with self._lock:
            events = list(self._queue)
            self._queue.clear()
        for start in range(0, len(events), MAX_EVENTS_PER_REQUEST):
            self.transport.send_nowait(events[start : start + MAX_EVENTS_PER_REQUEST])
