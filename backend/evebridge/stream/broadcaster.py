# evebridge/stream/broadcaster.py
import asyncio
import contextlib
import itertools
import logging
import threading

from ..schemas import NormalizedEvent, TenantContext

logger = logging.getLogger(__name__)

# sentinella di chiusura forzata per i viewer
CLOSED = object()


class Viewer:
    """
    Coda bounded di un singolo viewer SSE.
    Piena → si scarta il più vecchio (drop head): il broadcaster non aspetta mai.
    """

    def __init__(self, viewer_id: int, tenant: TenantContext, cap: int):
        self.id = viewer_id
        self.tenant = tenant
        self._q: asyncio.Queue = asyncio.Queue(maxsize=cap)
        self.dropped = 0
        self.enqueued = 0
        self.closed = False

    def offer(self, ev: NormalizedEvent) -> None:
        if self.closed:
            return
        if self._q.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                self._q.get_nowait()
                self.dropped += 1
        self._q.put_nowait(ev)
        self.enqueued += 1

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # svuota e lascia solo la sentinella: niente drain in chiusura
        while not self._q.empty():
            self._q.get_nowait()
        self._q.put_nowait(CLOSED)

    async def get(self, timeout: float | None = None):
        """Prossimo evento, CLOSED a chiusura, None se scade il timeout."""
        try:
            return await asyncio.wait_for(self._q.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def qsize(self) -> int:
        return self._q.qsize()


class Broadcaster:
    """Fan-out in-process: un flusso in ingresso, una coda per viewer connesso."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._viewers: dict[int, Viewer] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def register(self, tenant: TenantContext, cap: int | None = None) -> Viewer:
        viewer = Viewer(next(self._ids), tenant, cap or self.queue_size)
        with self._lock:
            self._viewers[viewer.id] = viewer
        logger.info("Viewer %d connected (tenant %d)", viewer.id, tenant.tenant_id)
        return viewer

    def unregister(self, viewer: Viewer) -> None:
        with self._lock:
            self._viewers.pop(viewer.id, None)
        viewer.close()
        logger.info("Viewer %d disconnected (dropped=%d)", viewer.id, viewer.dropped)

    def viewer_count(self) -> int:
        with self._lock:
            return len(self._viewers)

    def publish(self, ev: NormalizedEvent) -> int:
        """Consegna a tutti i viewer dello stesso tenant; ritorna quanti l'hanno ricevuto."""
        with self._lock:
            targets = list(self._viewers.values())
        n = 0
        for v in targets:
            if v.tenant.tenant_id != ev.tenant_id:
                continue
            v.offer(ev)
            n += 1
        return n

    def close_all(self) -> None:
        with self._lock:
            targets = list(self._viewers.values())
            self._viewers.clear()
        for v in targets:
            v.close()
        if targets:
            logger.info("Force-closed %d viewer stream(s)", len(targets))
