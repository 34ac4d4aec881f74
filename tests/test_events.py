"""Change events reaching stream subscribers."""

import asyncio
import json
import threading

from g2a.api.events import SessionEventBroker
from g2a.api.sse import format_sse
from g2a.core.bus import ChangeBus


def test_format_sse_frames_one_json_event():
    frame = format_sse({"type": "anchor.created", "anchorId": "S1-TC1-WHEN-1"})
    assert frame.startswith(b"data: ") and frame.endswith(b"\n\n")
    assert json.loads(frame[len(b"data: "):].decode("utf-8")) == {"type": "anchor.created", "anchorId": "S1-TC1-WHEN-1"}


def test_bus_events_reach_connected_subscribers_only():
    async def scenario():
        broker = SessionEventBroker()
        bus = ChangeBus("S1")
        bus.subscribe(broker.publish_change)
        queue = broker.subscribe("S1")
        other = broker.subscribe("S2")

        bus.emit("link.deleted", binomioId="bf-1")
        event = await asyncio.wait_for(queue.get(), timeout=1.0)

        broker.unsubscribe("S1", queue)
        bus.emit("link.deleted", binomioId="bf-2")
        await asyncio.sleep(0)
        return event, queue.qsize(), other.qsize(), broker.subscriber_count("S1")

    event, left_over, unrelated, remaining = asyncio.run(scenario())
    assert event["type"] == "link.deleted"
    assert event["payload"] == {"binomioId": "bf-1"}
    assert event["sessionId"] == "S1"
    assert left_over == 0
    assert unrelated == 0
    assert remaining == 0


def test_events_from_worker_threads_are_handed_to_the_loop():
    async def scenario():
        broker = SessionEventBroker()
        bus = ChangeBus("S1")
        bus.subscribe(broker.publish_change)
        queue = broker.subscribe("S1")
        worker = threading.Thread(target=bus.emit, args=("anchor.created",), kwargs={"anchorId": "A"})
        worker.start()
        worker.join()
        return await asyncio.wait_for(queue.get(), timeout=1.0)

    assert asyncio.run(scenario())["payload"] == {"anchorId": "A"}


def test_lagging_subscriber_keeps_the_newest_events():
    async def scenario():
        broker = SessionEventBroker(backlog=2)
        bus = ChangeBus("S1")
        bus.subscribe(broker.publish_change)
        queue = broker.subscribe("S1")
        for n in range(3):
            bus.emit("tick", n=n)
        kept = [queue.get_nowait()["payload"]["n"] for _ in range(queue.qsize())]
        return kept, broker.dropped

    kept, dropped = asyncio.run(scenario())
    assert kept == [1, 2]
    assert dropped == 1


def test_publish_without_subscribers_is_a_no_op():
    broker = SessionEventBroker()
    bus = ChangeBus("S1")
    bus.subscribe(broker.publish_change)
    bus.emit("anchor.created", anchorId="A")
    assert [e.type for e in bus.recent()] == ["anchor.created"]
