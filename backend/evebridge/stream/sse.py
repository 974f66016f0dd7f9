# evebridge/stream/sse.py
from typing import AsyncIterator, Awaitable, Callable

from ..schemas import NormalizedEvent, TenantContext
from .broadcaster import CLOSED, Broadcaster

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Content-Encoding": "identity",
}

KEEPALIVE_FRAME = b": keep-alive\n\n"


def event_frame(ev: NormalizedEvent) -> bytes:
    return f"data: {ev.model_dump_json()}\n\n".encode("utf-8")


async def viewer_frames(
    broadcaster: Broadcaster,
    tenant: TenantContext,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive: float = 15.0,
    cap: int | None = None,
) -> AsyncIterator[bytes]:
    """
    Un frame per evento (ogni yield è un chunk flushato dalla StreamingResponse).
    Il viewer si registra alla prima iterazione: una response chiusa prima di
    partire non lascia nulla nel registry.
    Esce a disconnessione del client o a chiusura forzata; la coda del viewer si perde.
    """
    viewer = broadcaster.register(tenant, cap=cap)
    try:
        while True:
            if await is_disconnected():
                break
            item = await viewer.get(timeout=keepalive)
            if item is CLOSED:
                break
            if item is None:
                yield KEEPALIVE_FRAME
                continue
            yield event_frame(item)
    finally:
        broadcaster.unregister(viewer)
