"""Tests for the batched event tracker and its transports."""

import asyncio
import json

import httpx
import pytest
from sqlalchemy import select

from giftghost.errors import TransportError
from giftghost.models.tracking_event import TrackingEvent
from giftghost.services.tracking import (
    ClientTracker,
    DatabaseTransport,
    FileIdStore,
    HttpTransport,
    ServerTracker,
    Tracker,
)


class TestBatching:
    """Test batch-size triggered flushing."""

    def test_below_batch_size_does_not_flush(self, fake_transport):
        tracker = Tracker(fake_transport, batch_size=10)

        async def scenario():
            tasks = [tracker.track("scene_view", {"index": i}) for i in range(9)]
            await asyncio.sleep(0)
            return tasks

        tasks = asyncio.run(scenario())

        assert tasks == [None] * 9
        assert fake_transport.batches == []
        assert tracker.queue_length == 9

    def test_batch_size_triggers_exactly_one_flush(self, fake_transport):
        tracker = Tracker(fake_transport, batch_size=10)

        async def scenario():
            tasks = [tracker.track("scene_view", {"index": i}) for i in range(10)]
            flushes = [task for task in tasks if task is not None]
            assert len(flushes) == 1
            return await flushes[0]

        sent = asyncio.run(scenario())

        assert sent == 10
        assert len(fake_transport.batches) == 1
        assert [e["properties"]["index"] for e in fake_transport.batches[0]] == list(range(10))
        assert tracker.queue_length == 0

    def test_failed_flush_requeues_everything(self, fake_transport):
        tracker = Tracker(fake_transport, batch_size=10)
        fake_transport.fail = True

        async def scenario():
            tasks = [tracker.track("click", {"index": i}) for i in range(10)]
            return await tasks[-1]

        assert asyncio.run(scenario()) == 0
        assert tracker.queue_length == 10

        fake_transport.fail = False
        assert asyncio.run(tracker.flush()) == 10
        assert [e["properties"]["index"] for e in fake_transport.events] == list(range(10))

    def test_requeued_events_stay_ahead_of_new_ones(self, fake_transport):
        tracker = Tracker(fake_transport, batch_size=100)
        tracker.track("first")
        tracker.track("second")
        fake_transport.fail = True
        asyncio.run(tracker.flush())

        tracker.track("third")

        assert [e["name"] for e in tracker.snapshot()] == ["first", "second", "third"]

    def test_large_queue_is_sent_in_request_sized_chunks(self, fake_transport):
        tracker = Tracker(fake_transport, batch_size=1000, max_queue_size=1000)
        for i in range(250):
            tracker.track("scroll", {"index": i})

        assert asyncio.run(tracker.flush()) == 250
        assert [len(batch) for batch in fake_transport.batches] == [100, 100, 50]

    def test_flush_empty_queue(self, fake_transport):
        assert asyncio.run(Tracker(fake_transport).flush()) == 0
        assert fake_transport.batches == []


class TestEventShape:
    def test_event_fields(self, fake_transport):
        tracker = ServerTracker(fake_transport)

        tracker.track("session_start", {"mode": "LISTENER"}, session_id="s-1", anonymous_id="a-1", trace_id="t-1")
        tracker.track("page_view")

        tagged, untagged = tracker.snapshot()
        assert tagged["sessionId"] == "s-1"
        assert tagged["anonymousId"] == "a-1"
        assert tagged["traceId"] == "t-1"
        assert isinstance(tagged["timestamp"], int)
        assert untagged["sessionId"] == "server"
        assert untagged["anonymousId"] == "unknown"
        assert "traceId" not in untagged
        assert untagged["properties"] == {}

    def test_properties_are_sanitized(self, fake_transport):
        tracker = Tracker(fake_transport)

        tracker.track("login", {"password": "hunter2", "callback": print, "ok": True})

        assert tracker.snapshot()[0]["properties"] == {"password": "[REDACTED]", "ok": True}


class TestQueueBound:
    def test_overflow_drops_oldest(self, fake_transport):
        tracker = Tracker(fake_transport, batch_size=100, max_queue_size=3)

        for i in range(5):
            tracker.track(f"event-{i}")

        assert [e["name"] for e in tracker.snapshot()] == ["event-2", "event-3", "event-4"]
        assert tracker.dropped_count == 2


class TestTimer:
    def test_periodic_flush_and_stop(self, fake_transport):
        tracker = Tracker(fake_transport, batch_size=100, flush_interval=0.01)

        async def scenario():
            tracker.start()
            tracker.track("tick")
            await asyncio.sleep(0.1)
            tracker.track("tock")
            await tracker.stop()

        asyncio.run(scenario())

        assert [e["name"] for e in fake_transport.events] == ["tick", "tock"]
        assert tracker.queue_length == 0


class TestClientTracker:
    def test_ids_and_exit_flush(self, tmp_path, fake_transport):
        store = FileIdStore(tmp_path / "anonymous_id")
        tracker = ClientTracker(fake_transport, id_store=store, batch_size=500, max_queue_size=500)

        for i in range(150):
            tracker.track("scene_view", {"index": i})
        tracker.flush_on_exit()

        info = tracker.session_info()
        assert info["anonymousId"] == store.get_or_create_anonymous_id()
        assert info["queueLength"] == 0
        assert [len(batch) for batch in fake_transport.nowait_batches] == [100, 50]
        assert fake_transport.nowait_batches[0][0]["sessionId"] == tracker.session_id
        assert fake_transport.nowait_batches[0][0]["anonymousId"] == tracker.anonymous_id

    def test_anonymous_id_persists_across_processes(self, tmp_path, fake_transport):
        store = FileIdStore(tmp_path / "ids" / "anonymous_id")

        first = ClientTracker(fake_transport, id_store=store)
        second = ClientTracker(fake_transport, id_store=store)

        assert first.anonymous_id == second.anonymous_id
        assert first.session_id != second.session_id

    def test_exit_hook_registered_once(self, monkeypatch, fake_transport):
        registered = []
        monkeypatch.setattr("giftghost.services.tracking.tracker.atexit.register", registered.append)
        tracker = ClientTracker(fake_transport)

        tracker.register_exit_hook()
        tracker.register_exit_hook()

        assert registered == [tracker.flush_on_exit]


class TestHttpTransport:
    def test_posts_events(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "count": 1})

        transport = HttpTransport(
            "http://testserver/api/track", client_transport=httpx.MockTransport(handler)
        )
        asyncio.run(transport.send([{"name": "click"}]))

        assert received == [{"events": [{"name": "click"}]}]

    def test_non_2xx_is_failure(self):
        transport = HttpTransport(
            "http://testserver/api/track",
            client_transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )

        with pytest.raises(TransportError) as exc:
            asyncio.run(transport.send([{"name": "click"}]))

        assert exc.value.status_code == 503

    def test_network_error_is_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport = HttpTransport(
            "http://testserver/api/track", client_transport=httpx.MockTransport(handler)
        )

        with pytest.raises(TransportError):
            asyncio.run(transport.send([{"name": "click"}]))

    def test_tracker_requeues_on_http_error(self):
        transport = HttpTransport(
            "http://testserver/api/track",
            client_transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        tracker = Tracker(transport, batch_size=100)
        tracker.track("click")

        assert asyncio.run(tracker.flush()) == 0
        assert tracker.queue_length == 1


class TestDatabaseTransport:
    def test_writes_events(self, session_factory, session):
        transport = DatabaseTransport(session_factory)
        tracker = ServerTracker(transport)
        tracker.track("generation_completed", {"persona": "The Tinkerer"}, session_id="s-1", anonymous_id="a-1", trace_id="t-1")

        assert asyncio.run(tracker.flush()) == 1

        row = session.execute(select(TrackingEvent)).scalar_one()
        assert row.name == "generation_completed"
        assert row.properties == {"persona": "The Tinkerer"}
        assert row.trace_id == "t-1"
        assert row.device_type == "desktop"

    def test_malformed_events_are_dropped(self, session_factory, session):
        transport = DatabaseTransport(session_factory)

        asyncio.run(transport.send([{"name": "", "timestamp": "not-a-time"}]))

        assert session.execute(select(TrackingEvent)).scalars().all() == []


class StallingTransport:
    """First send blocks until cancelled; later sends are recorded."""

    def __init__(self):
        self.started: asyncio.Event | None = None
        self.calls = 0
        self.batches: list[list[dict]] = []

    async def send(self, events):
        self.calls += 1
        if self.calls == 1:
            self.started.set()
            await asyncio.sleep(3600)
        self.batches.append(list(events))

    def send_nowait(self, events):
        self.batches.append(list(events))


class BrokenTransport:
    """Fails with an error that is not a TransportError."""

    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    async def send(self, events):
        self.calls += 1
        raise self.error

    def send_nowait(self, events):
        raise self.error


class TestFlushFailures:
    """Events survive every kind of failed delivery."""

    def test_unexpected_error_requeues(self):
        tracker = Tracker(BrokenTransport(ValueError("bad payload")), batch_size=100)
        for i in range(3):
            tracker.track("click", {"index": i})

        assert asyncio.run(tracker.flush()) == 0
        assert tracker.queue_length == 3
        assert [e["properties"]["index"] for e in tracker.snapshot()] == [0, 1, 2]

    def test_cancelled_flush_requeues(self):
        transport = StallingTransport()
        tracker = Tracker(transport, batch_size=100)

        async def scenario():
            transport.started = asyncio.Event()
            for i in range(3):
                tracker.track("click", {"index": i})
            task = asyncio.get_running_loop().create_task(tracker.flush())
            await transport.started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert tracker.queue_length == 3
        assert [e["properties"]["index"] for e in tracker.snapshot()] == [0, 1, 2]

    def test_stop_during_timed_flush_delivers_on_final_flush(self):
        transport = StallingTransport()
        tracker = Tracker(transport, batch_size=100, flush_interval=0.01)

        async def scenario():
            transport.started = asyncio.Event()
            tracker.start()
            for i in range(3):
                tracker.track("click", {"index": i})
            await transport.started.wait()
            await tracker.stop()

        asyncio.run(scenario())

        assert tracker.queue_length == 0
        assert [e["properties"]["index"] for e in transport.batches[0]] == [0, 1, 2]

    def test_timer_keeps_running_after_failed_flush(self, fake_transport):
        tracker = Tracker(fake_transport, batch_size=100, flush_interval=0.01)
        original_flush = tracker.flush
        attempts = []

        async def flaky_flush():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("first flush blew up")
            return await original_flush()

        tracker.flush = flaky_flush

        async def scenario():
            tracker.start()
            tracker.track("tick")
            await asyncio.sleep(0.1)
            assert fake_transport.events != []
            await tracker.stop()

        asyncio.run(scenario())

        assert len(attempts) > 2
        assert [e["name"] for e in fake_transport.events] == ["tick"]

    def test_non_finite_property_does_not_block_batch(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.extend(json.loads(request.content)["events"])
            return httpx.Response(200, json={"success": True})

        transport = HttpTransport(
            "http://testserver/api/track", client_transport=httpx.MockTransport(handler)
        )
        tracker = Tracker(transport, batch_size=100)
        tracker.track("ok_event", {"a": 1})
        tracker.track("score", {"ratio": float("nan"), "nested": {"peak": float("inf")}})

        assert asyncio.run(tracker.flush()) == 2
        assert tracker.queue_length == 0
        assert [e["name"] for e in received] == ["ok_event", "score"]
        assert received[1]["properties"] == {"ratio": None, "nested": {"peak": None}}


class TestWorkerThreadTracking:
    def test_full_batch_from_worker_thread_flushes_on_tracker_loop(self, fake_transport):
        tracker = Tracker(fake_transport, batch_size=3, flush_interval=3600)

        async def scenario():
            tracker.start()

            def emit():
                for i in range(3):
                    tracker.track("click", {"index": i})

            await asyncio.to_thread(emit)
            for _ in range(20):
                if fake_transport.batches:
                    break
                await asyncio.sleep(0.01)
            await tracker.stop()

        asyncio.run(scenario())

        assert len(fake_transport.batches) == 1
        assert [e["properties"]["index"] for e in fake_transport.batches[0]] == [0, 1, 2]
