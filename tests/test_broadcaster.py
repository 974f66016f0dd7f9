"""Tests for the fan-out broadcaster and the per-viewer SSE loop."""

import asyncio
import json

from evebridge.schemas import TenantContext
from evebridge.stream.broadcaster import CLOSED, Broadcaster
from evebridge.stream.sse import KEEPALIVE_FRAME, event_frame, viewer_frames


async def _drain(viewer, timeout=0.05):
    out = []
    while True:
        item = await viewer.get(timeout=timeout)
        if item is None or item is CLOSED:
            return out
        out.append(item)


def test_all_viewers_receive_burst_in_order(event_factory, tenant):
    async def scenario():
        b = Broadcaster(queue_size=100)
        viewers = [b.register(tenant) for _ in range(3)]
        events = [event_factory(src_port=i) for i in range(20)]
        for ev in events:
            assert b.publish(ev) == 3
        return events, [await _drain(v) for v in viewers]

    events, received = asyncio.run(scenario())
    for got in received:
        assert [e.src_port for e in got] == [e.src_port for e in events]


def test_slow_viewer_drops_oldest_without_affecting_others(event_factory, tenant):
    async def scenario():
        b = Broadcaster(queue_size=100)
        fast = [b.register(tenant) for _ in range(2)]
        slow = b.register(tenant, cap=3)
        for i in range(10):
            b.publish(event_factory(src_port=i))
        return [await _drain(v) for v in fast], await _drain(slow), slow

    fast_got, slow_got, slow = asyncio.run(scenario())
    for got in fast_got:
        assert [e.src_port for e in got] == list(range(10))
    # drop-oldest: restano gli ultimi 3, nell'ordine di pubblicazione
    assert [e.src_port for e in slow_got] == [7, 8, 9]
    assert slow.dropped == 7


def test_viewers_only_see_their_tenant(event_factory):
    async def scenario():
        b = Broadcaster()
        v1 = b.register(TenantContext(tenant_id=1))
        v2 = b.register(TenantContext(tenant_id=2))
        b.publish(event_factory(tenant_id=1))
        b.publish(event_factory(tenant_id=2))
        b.publish(event_factory(tenant_id=2))
        return await _drain(v1), await _drain(v2)

    got1, got2 = asyncio.run(scenario())
    assert [e.tenant_id for e in got1] == [1]
    assert [e.tenant_id for e in got2] == [2, 2]


def test_unregister_and_close_all(event_factory, tenant):
    async def scenario():
        b = Broadcaster()
        v1, v2, v3 = (b.register(tenant) for _ in range(3))
        b.unregister(v1)
        assert b.viewer_count() == 2
        b.publish(event_factory())
        b.close_all()
        return b, v1, v2, v3, await v2.get(timeout=0.1), await v3.get(timeout=0.1)

    b, v1, v2, v3, item2, item3 = asyncio.run(scenario())
    assert b.viewer_count() == 0
    # chiusura forzata: niente drain, solo la sentinella
    assert item2 is CLOSED and item3 is CLOSED
    assert v1.closed and v2.closed and v3.closed


def test_closed_viewer_ignores_new_events(event_factory, tenant):
    async def scenario():
        b = Broadcaster()
        v = b.register(tenant)
        b.unregister(v)
        b.publish(event_factory())
        return v

    v = asyncio.run(scenario())
    assert v.qsize() == 1  # solo CLOSED
    assert v.enqueued == 0


def test_event_frame_format(event_factory):
    ev = event_factory()
    frame = event_frame(ev)
    assert frame.startswith(b"data: ")
    assert frame.endswith(b"\n\n")
    assert json.loads(frame[len(b"data: "):-2]) == json.loads(ev.model_dump_json())


def test_viewer_frames_until_disconnect(event_factory, tenant):
    async def scenario():
        b = Broadcaster()
        checks = {"n": 0}

        async def is_disconnected():
            checks["n"] += 1
            if checks["n"] == 1:
                # il viewer è già registrato alla prima iterazione
                assert b.viewer_count() == 1
                b.publish(event_factory(src_port=1))
                b.publish(event_factory(src_port=2))
            return checks["n"] > 2

        frames = [f async for f in viewer_frames(b, tenant, is_disconnected, keepalive=0.05)]
        return b, frames

    b, frames = asyncio.run(scenario())
    assert len(frames) == 2
    assert [json.loads(f[6:-2])["src_port"] for f in frames] == [1, 2]
    assert b.viewer_count() == 0


def test_viewer_frames_keepalive_and_shutdown(tenant):
    async def scenario():
        b = Broadcaster()

        async def never_disconnected():
            return False

        frames = []
        async for f in viewer_frames(b, tenant, never_disconnected, keepalive=0.01):
            frames.append(f)
            if len(frames) == 2:
                b.close_all()
        return b, frames

    b, frames = asyncio.run(scenario())
    assert frames == [KEEPALIVE_FRAME, KEEPALIVE_FRAME]
    assert b.viewer_count() == 0


def test_stream_closed_before_first_frame_leaves_no_viewer(event_factory, tenant):
    async def scenario():
        b = Broadcaster()

        async def never_disconnected():
            return False

        frames = viewer_frames(b, tenant, never_disconnected, keepalive=0.01, cap=5)
        await frames.aclose()
        delivered = [b.publish(event_factory(src_port=i)) for i in range(20)]
        return b, delivered

    b, delivered = asyncio.run(scenario())
    assert b.viewer_count() == 0
    assert delivered == [0] * 20
