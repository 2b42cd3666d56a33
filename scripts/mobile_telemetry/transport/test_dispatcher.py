#!/usr/bin/env python3
"""
Tests for the dispatcher.

Covers grouping, the watermark and periodic triggers, retry bookkeeping,
before_send and teardown. Time is virtual (ManualScheduler) and the network
is an in-memory sender.
"""

import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

import httpx

# Add scripts dir to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from mobile_telemetry.schema import Category, CrashReport, EventRecord, NetworkRequest, ScreenView, TouchRecord
from mobile_telemetry.transport.dispatcher import Dispatcher
from mobile_telemetry.transport.http import HttpxSender, Sender, TransportError
from mobile_telemetry.transport.policy import FlushPolicy
from mobile_telemetry.transport.scheduler import ManualScheduler

API_URL = "https://collector.example.com"


class FakeSender(Sender):
    """Records every attempt; fails while `failing` is set or `fail_next` > 0."""

    def __init__(self):
        self.attempts = []
        self.delivered = []
        self.failing = False
        self.fail_next = 0
        self.on_send = None
        self.closed = False

    async def send(self, url, payload, method="POST"):
        self.attempts.append((url, payload))
        if self.on_send is not None:
            self.on_send(url, payload)
        await asyncio.sleep(0)
        if self.failing or self.fail_next > 0:
            self.fail_next = max(0, self.fail_next - 1)
            raise TransportError("service unavailable", status_code=503)
        self.delivered.append((url, payload))

    async def aclose(self):
        self.closed = True


def make_dispatcher(sender=None, scheduler=None, **kwargs):
    return Dispatcher(
        sender or FakeSender(),
        API_URL,
        "key-123",
        "app-1",
        session_id="s1",
        scheduler=scheduler or ManualScheduler(),
        **kwargs,
    )


def event(name):
    return EventRecord(session_id="s1", event_name=name)


def network(url):
    return NetworkRequest(session_id="s1", url=url, method="GET", duration_ms=12.0, status_code=200)


def test_flush_groups_by_category():
    """Several events go out as one batch; other categories one by one."""
    print("Testing grouping...")

    async def scenario():
        sender = FakeSender()
        d = make_dispatcher(sender, envelope={"environment": "staging", "release": None})
        for name in ("a", "b", "c"):
            d.enqueue(Category.EVENT, event(name))
        d.enqueue(Category.NETWORK, network("https://api.example.com/1"))
        d.enqueue(Category.NETWORK, network("https://api.example.com/2"))

        await d.flush()
        return d, sender

    d, sender = asyncio.run(scenario())

    urls = [url for url, _ in sender.delivered]
    assert urls.count(f"{API_URL}/v1/rum/events/batch") == 1
    assert urls.count(f"{API_URL}/v1/rum/network-requests") == 2
    assert d.pending == 0

    batch = next(p for url, p in sender.delivered if url.endswith("/batch"))
    assert [e["eventName"] for e in batch["events"]] == ["a", "b", "c"]
    assert batch["apiKey"] == "key-123"
    assert batch["applicationId"] == "app-1"
    assert batch["sessionId"] == "s1"
    assert batch["environment"] == "staging"
    assert "release" not in batch

    network_urls = [p["url"] for url, p in sender.delivered if url.endswith("network-requests")]
    assert network_urls == ["https://api.example.com/1", "https://api.example.com/2"]

    print("✓ Grouping test passed")


def test_single_event_uses_single_endpoint():
    async def scenario():
        sender = FakeSender()
        d = make_dispatcher(sender)
        d.enqueue(Category.EVENT, event("only"))
        await d.flush()
        return sender

    sender = asyncio.run(scenario())
    assert len(sender.delivered) == 1
    url, payload = sender.delivered[0]
    assert url == f"{API_URL}/v1/rum/events"
    assert payload["eventName"] == "only"
    assert payload["platform"] == "mobile"
    assert payload["timestamp"]


def test_heatmap_payload_is_wrapped():
    async def scenario():
        sender = FakeSender()
        d = make_dispatcher(sender)
        d.enqueue(Category.HEATMAP, TouchRecord(session_id="s1", kind="tap", x=1, y=2))
        await d.flush()
        return sender

    sender = asyncio.run(scenario())
    url, payload = sender.delivered[0]
    assert url == f"{API_URL}/v1/sdk/heatmap"
    assert payload["heatmaps"][0]["type"] == "tap"
    assert payload["sessionId"] == "s1"
    assert payload["apiKey"] == "key-123"


def test_watermark_triggers_flush_without_another_enqueue():
    print("Testing watermark...")

    async def scenario():
        sender = FakeSender()
        d = make_dispatcher(sender, policy=FlushPolicy(max_queue_size=3, flush_interval=5.0))
        d.enqueue(Category.EVENT, event("a"))
        d.enqueue(Category.EVENT, event("b"))
        assert d.pending == 2
        d.enqueue(Category.EVENT, event("c"))
        # Drained synchronously, sent in the background
        assert d.pending == 0
        await d.join()
        return sender

    sender = asyncio.run(scenario())
    assert len(sender.delivered) == 1
    assert len(sender.delivered[0][1]["events"]) == 3

    print("✓ Watermark test passed")


def test_periodic_timer_flushes_and_rearms():
    print("Testing periodic flush...")

    async def scenario():
        scheduler = ManualScheduler()
        sender = FakeSender()
        d = make_dispatcher(sender, scheduler=scheduler)
        d.enqueue(Category.EVENT, event("a"))

        scheduler.advance(4.9)
        assert d.pending == 1

        scheduler.advance(0.1)
        assert d.pending == 0
        await d.join()
        assert scheduler.pending == 1
        return sender

    sender = asyncio.run(scenario())
    assert len(sender.delivered) == 1

    print("✓ Periodic flush test passed")


def test_retry_count_capped_at_three():
    """A failing entry is tried four times in total, then dropped."""
    print("Testing retry cap...")

    async def scenario():
        sender = FakeSender()
        sender.failing = True
        d = make_dispatcher(sender)
        d.enqueue(Category.EVENT, event("a"))

        counts = []
        for _ in range(4):
            await d.flush()
            counts.append([e.retry_count for e in d._queue])
        return sender, counts, d

    sender, counts, d = asyncio.run(scenario())
    assert counts == [[1], [2], [3], []]
    assert len(sender.attempts) == 4
    assert d.pending == 0

    print("✓ Retry cap test passed")


def test_individual_failure_requeues_whole_group():
    """A transport failure mid-group sends the whole group back, in order."""

    async def scenario():
        sender = FakeSender()

        def fail_second_once(url, payload):
            if payload.get("url") == "https://api.example.com/2" and not sender.delivered[1:]:
                sender.fail_next = 1

        sender.on_send = fail_second_once
        d = make_dispatcher(sender)
        for i in (1, 2, 3):
            d.enqueue(Category.NETWORK, network(f"https://api.example.com/{i}"))
        await d.flush()
        pending = [(e.record.url, e.retry_count) for e in d._queue]
        await d.flush()
        return d, sender, pending

    d, sender, pending = asyncio.run(scenario())
    assert pending == [
        ("https://api.example.com/1", 1),
        ("https://api.example.com/2", 1),
        ("https://api.example.com/3", 1),
    ]
    assert [p["url"][-1] for _, p in sender.delivered] == ["1", "1", "2", "3"]
    assert d.pending == 0


def test_unencodable_record_is_dropped_alone():
    """A record httpx cannot encode is dropped; the rest of the group still goes out."""
    print("Testing unencodable record...")

    seen = []

    def handler(request):
        seen.append(json.loads(request.content)["screenName"])
        return httpx.Response(202)

    async def scenario():
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        d = make_dispatcher(HttpxSender("key-123", "app-1", client=http))
        d.enqueue(Category.SCREEN_VIEW, ScreenView(session_id="s1", screen_name="A"))
        d.enqueue(Category.SCREEN_VIEW, ScreenView(
            session_id="s1", screen_name="B", properties={"at": datetime(2024, 1, 1)}))
        d.enqueue(Category.SCREEN_VIEW, ScreenView(session_id="s1", screen_name="C"))
        await d.flush()
        await d.flush()
        pending = d.pending
        await http.aclose()
        return pending

    pending = asyncio.run(scenario())
    assert seen == ["A", "C"]
    assert pending == 0

    print("✓ Unencodable record test passed")


def test_unencodable_event_is_left_out_of_batch():
    async def scenario():
        sender = FakeSender()
        d = make_dispatcher(sender)
        d.enqueue(Category.EVENT, event("a"))
        d.enqueue(Category.EVENT, EventRecord(
            session_id="s1", event_name="bad", properties={"at": datetime(2024, 1, 1)}))
        d.enqueue(Category.EVENT, EventRecord(
            session_id="s1", event_name="nan", properties={"value": float("nan")}))
        d.enqueue(Category.EVENT, event("c"))
        await d.flush()
        return d, sender

    d, sender = asyncio.run(scenario())
    ((url, batch),) = sender.delivered
    assert url.endswith("/v1/rum/events/batch")
    assert [e["eventName"] for e in batch["events"]] == ["a", "c"]
    assert d.pending == 0


def test_failed_crash_during_teardown_gets_last_attempt():
    async def scenario():
        sender = FakeSender()
        sender.fail_next = 1
        d = make_dispatcher(sender)
        d.send_soon(CrashReport(session_id="s1", message="boom"))
        await d.aclose()
        return d, sender

    d, sender = asyncio.run(scenario())
    assert len(sender.attempts) == 2
    assert sender.delivered[0][0] == f"{API_URL}/v1/errors/errors"
    assert d.pending == 0
    assert sender.closed is True


def test_records_enqueued_during_send_wait_for_next_cycle():
    async def scenario():
        sender = FakeSender()
        d = make_dispatcher(sender)

        def enqueue_late(url, payload):
            if payload.get("eventName") == "first":
                d.enqueue(Category.EVENT, event("late"))

        sender.on_send = enqueue_late
        d.enqueue(Category.EVENT, event("first"))
        await d.flush()
        return d, sender

    d, sender = asyncio.run(scenario())
    assert len(sender.delivered) == 1
    assert d.pending == 1


def test_before_send_veto_and_rewrite():
    print("Testing before_send...")

    def hook(payload):
        if payload.get("eventName") == "secret":
            return None
        if payload.get("eventName") == "explode":
            raise RuntimeError("hook bug")
        return {**payload, "scrubbed": True}

    async def scenario():
        sender = FakeSender()
        d = make_dispatcher(sender, before_send=hook)
        for name in ("secret", "explode", "public"):
            d.enqueue(Category.EVENT, event(name))
            await d.flush()
        return d, sender

    d, sender = asyncio.run(scenario())
    assert len(sender.attempts) == 1
    assert sender.delivered[0][1]["eventName"] == "public"
    assert sender.delivered[0][1]["scrubbed"] is True
    assert d.pending == 0

    print("✓ before_send test passed")


def test_send_immediate_falls_back_to_queue():
    print("Testing send_immediate...")

    async def scenario():
        sender = FakeSender()
        d = make_dispatcher(sender)
        crash = CrashReport(session_id="s1", message="boom")

        ok = await d.send_immediate(crash)
        sender.failing = True
        failed = await d.send_immediate(crash)
        return d, sender, ok, failed

    d, sender, ok, failed = asyncio.run(scenario())
    assert ok is True
    assert failed is False
    assert sender.delivered[0][0] == f"{API_URL}/v1/errors/errors"
    assert d.pending == 1
    assert next(iter(d._queue)).category is Category.ERROR

    print("✓ send_immediate test passed")


def test_unknown_category_is_dropped():
    async def scenario():
        d = make_dispatcher()
        d.enqueue("bogus", event("a"))
        assert d.pending == 0
        d.enqueue("event", event("b"))
        assert next(iter(d._queue)).category is Category.EVENT

    asyncio.run(scenario())


def test_close_cancels_timer_and_flushes_once():
    print("Testing close...")

    async def scenario():
        scheduler = ManualScheduler()
        sender = FakeSender()
        d = make_dispatcher(sender, scheduler=scheduler)
        d.enqueue(Category.EVENT, event("a"))

        task = d.close()
        assert task is not None
        assert scheduler.pending == 0
        assert d.close() is None

        d.enqueue(Category.EVENT, event("after"))
        assert d.pending == 0

        await d.aclose()
        scheduler.advance(60)
        return sender

    sender = asyncio.run(scenario())
    assert len(sender.delivered) == 1
    assert sender.closed is True

    print("✓ Close test passed")


def run_all_tests():
    """Run all dispatcher tests."""
    print("=" * 60)
    print("Running Dispatcher Tests")
    print("=" * 60 + "\n")

    tests = [
        test_flush_groups_by_category,
        test_single_event_uses_single_endpoint,
        test_heatmap_payload_is_wrapped,
        test_watermark_triggers_flush_without_another_enqueue,
        test_periodic_timer_flushes_and_rearms,
        test_retry_count_capped_at_three,
        test_individual_failure_requeues_whole_group,
        test_unencodable_record_is_dropped_alone,
        test_unencodable_event_is_left_out_of_batch,
        test_failed_crash_during_teardown_gets_last_attempt,
        test_records_enqueued_during_send_wait_for_next_cycle,
        test_before_send_veto_and_rewrite,
        test_send_immediate_falls_back_to_queue,
        test_unknown_category_is_dropped,
        test_close_cancels_timer_and_flushes_once,
    ]

    passed = 0
    failed = 0

    for test in tests:
        try:
            test()
            passed += 1
            print()
        except AssertionError as e:
            print(f"✗ Test failed: {e}")
            failed += 1
            print()

    print("=" * 60)
    print(f"Tests: {passed} passed, {failed} failed")
    print("=" * 60)

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
