from __future__ import annotations

import asyncio
import json
from typing import List

from services.hub.hub import BroadcastHub, OutboundQueue
from shared.chat.envelopes import ChatEnvelope, ClearEnvelope


class _Subscriber:
    def __init__(self, name: str, capacity: int = 256) -> None:
        self.session_id = name
        self.outbound = OutboundQueue(capacity)

    def drain(self) -> List[str]:
        frames = []
        while len(self.outbound):
            frames.append(self.outbound._items.popleft())
        return frames


def _chat(text: str) -> ChatEnvelope:
    return ChatEnvelope(text=text, handle="")


def test_outbound_queue_is_bounded_fifo_and_drains_after_close() -> None:
    async def scenario():
        queue = OutboundQueue(2)
        assert queue.offer("a")
        assert queue.offer("b")
        assert not queue.offer("c")
        queue.close()
        assert not queue.offer("d")
        return [await queue.get(), await queue.get(), await queue.get()]

    assert asyncio.run(scenario()) == ["a", "b", None]


def test_outbound_queue_get_wakes_on_offer() -> None:
    async def scenario():
        queue = OutboundQueue(4)
        getter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)
        queue.offer("late")
        return await asyncio.wait_for(getter, timeout=1)

    assert asyncio.run(scenario()) == "late"


def test_publish_fans_out_to_every_subscriber_in_order() -> None:
    async def scenario():
        hub = BroadcastHub("room1")
        hub.start()
        subs = [_Subscriber(f"s{i}") for i in range(3)]
        for sub in subs:
            hub.register(sub)
        for text in ("one", "two", "three"):
            hub.publish(_chat(text))
        await hub.flush()
        hub.stop()
        await hub.wait_closed()
        return subs

    subs = asyncio.run(scenario())
    for sub in subs:
        texts = [json.loads(f)["text"] for f in sub.drain()]
        assert texts == ["one", "two", "three"]


def test_full_queue_is_evicted_after_others_receive_the_message() -> None:
    async def scenario():
        hub = BroadcastHub("room1")
        hub.start()
        healthy = _Subscriber("healthy")
        slow = _Subscriber("slow", capacity=1)
        slow.outbound.offer("backlog")
        hub.register(healthy)
        hub.register(slow)
        hub.publish(_chat("hello"))
        await hub.flush()
        count_after_first = hub.subscriber_count

        hub.publish(_chat("again"))
        await hub.flush()
        return hub, healthy, slow, count_after_first

    hub, healthy, slow, count_after_first = asyncio.run(scenario())
    assert count_after_first == 1
    assert slow.outbound.closed
    assert slow.drain() == ["backlog"]
    assert [json.loads(f)["text"] for f in healthy.drain()] == ["hello", "again"]
    assert hub.snapshot()["evicted"] == 1


def test_evicted_session_never_re_enters() -> None:
    async def scenario():
        hub = BroadcastHub("room1")
        hub.start()
        sub = _Subscriber("s", capacity=1)
        hub.register(sub)
        hub.publish(_chat("fills"))
        hub.publish(_chat("overflows"))
        hub.register(sub)
        hub.publish(_chat("ignored"))
        await hub.flush()
        return hub, sub

    hub, sub = asyncio.run(scenario())
    assert hub.subscriber_count == 0
    assert [json.loads(f)["text"] for f in sub.drain()] == ["fills"]


def test_unregister_closes_the_queue() -> None:
    async def scenario():
        hub = BroadcastHub("room1")
        hub.start()
        sub = _Subscriber("s")
        hub.register(sub)
        hub.unregister(sub)
        hub.publish(ClearEnvelope())
        await hub.flush()
        return hub, sub

    hub, sub = asyncio.run(scenario())
    assert sub.outbound.closed
    assert sub.drain() == []
    assert hub.subscriber_count == 0


def test_publish_frame_relays_raw_text_unmodified() -> None:
    async def scenario():
        hub = BroadcastHub("room1")
        hub.start()
        sub = _Subscriber("s")
        hub.register(sub)
        hub.publish_frame("  not json  ")
        await hub.flush()
        return sub

    assert asyncio.run(scenario()).drain() == ["  not json  "]


def test_stop_closes_all_subscribers() -> None:
    async def scenario():
        hub = BroadcastHub("room1")
        hub.start()
        subs = [_Subscriber("a"), _Subscriber("b")]
        for sub in subs:
            hub.register(sub)
        await hub.flush()
        hub.stop()
        await hub.wait_closed()
        return hub, subs

    hub, subs = asyncio.run(scenario())
    assert not hub.running
    assert all(sub.outbound.closed for sub in subs)


def test_publish_from_another_thread() -> None:
    async def scenario():
        hub = BroadcastHub("room1")
        hub.start()
        sub = _Subscriber("s")
        hub.register(sub)
        await asyncio.to_thread(hub.publish, _chat("from thread"))
        await hub.flush()
        return sub

    frames = asyncio.run(scenario()).drain()
    assert [json.loads(f)["text"] for f in frames] == ["from thread"]


def test_snapshot_reflects_only_handled_events() -> None:
    async def scenario():
        hub = BroadcastHub("room1")
        sub = _Subscriber("s")
        hub.register(sub)
        hub.publish(_chat("queued"))
        before = hub.snapshot()

        hub.start()
        await hub.flush()
        after = await asyncio.to_thread(hub.snapshot)
        after["published"] = 99
        return before, after, hub.snapshot()

    before, after, current = asyncio.run(scenario())
    assert before == {"published": 0, "delivered": 0, "evicted": 0, "subscribers": 0}
    assert after["subscribers"] == 1
    assert current == {"published": 1, "delivered": 1, "evicted": 0, "subscribers": 1}
