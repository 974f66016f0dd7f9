# evebridge/ingest/driver.py
import asyncio
import enum
import logging
from dataclasses import asdict, dataclass
from typing import BinaryIO

from ..errors import ParseError
from ..messaging.publisher import Publisher
from ..schemas import NormalizedEvent, TenantContext
from ..storage import EventStore
from ..utils.geoip import GeoResolver
from .classify import event_priority, extract_iocs, is_brute_force
from .parser import decode_source_event, normalize

logger = logging.getLogger(__name__)


class DriverState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class IngestStats:
    lines: int = 0
    skipped: int = 0
    parsed: int = 0
    parse_errors: int = 0
    persisted: int = 0
    persist_errors: int = 0
    publish_scheduled: int = 0
    publish_dropped: int = 0
    publish_errors: int = 0
    # esito dei publish async, noto solo dopo il flush
    publish_acked: int = 0
    publish_failed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class IngestionDriver:
    """
    Worker sequenziale: una riga alla volta Parse → Enrich → Persist → Publish.
    Ogni stadio fallisce per conto suo; la cancellazione è controllata tra una riga e l'altra.
    """

    def __init__(
        self,
        store: EventStore,
        publisher: Publisher,
        tenant: TenantContext,
        geo: GeoResolver | None = None,
        ioc_unique: bool = False,
        flush_timeout: float = 5.0,
    ):
        self.store = store
        self.publisher = publisher
        self.tenant = tenant
        self.geo = geo
        self.ioc_unique = ioc_unique
        self.flush_timeout = flush_timeout
        self.state = DriverState.IDLE
        self.stats = IngestStats()
        self.drained = asyncio.Event()

    async def run(self, stream: BinaryIO, cancel: asyncio.Event) -> IngestStats:
        self.state = DriverState.RUNNING
        acked_before, failed_before = self.publisher.published, self.publisher.failed
        logger.info("Ingestion started for tenant %d", self.tenant.tenant_id)
        try:
            while not cancel.is_set():
                # readline bloccante fuori dal loop; la riga letta viene comunque processata
                raw = await asyncio.to_thread(stream.readline)
                if not raw:
                    break
                await self.process_line(raw)
            else:
                logger.info("Cancellation requested, stopping ingestion")
        finally:
            self.state = DriverState.DRAINING
            await self.publisher.flush(self.flush_timeout)
            self.stats.publish_acked = self.publisher.published - acked_before
            self.stats.publish_failed = self.publisher.failed - failed_before
            self.state = DriverState.STOPPED
            self.drained.set()
            logger.info("Ingestion stopped: %s", self.stats.as_dict())
        return self.stats

    async def process_line(self, raw: bytes) -> NormalizedEvent | None:
        self.stats.lines += 1
        line = raw.strip()
        if not line:
            self.stats.skipped += 1
            return None

        try:
            src = decode_source_event(line)
        except ParseError as e:
            self.stats.parse_errors += 1
            logger.warning("Failed to parse event: %s", e)
            return None
        ev = normalize(src, line, self.tenant, self.geo)
        self.stats.parsed += 1

        try:
            await asyncio.to_thread(self.store.insert, ev)
            self.stats.persisted += 1
        except Exception as e:
            self.stats.persist_errors += 1
            logger.error("Failed to store event in database: %s", e)

        # publish indipendente dall'esito dell'insert
        try:
            if self.publisher.publish_event(ev) is None:
                self.stats.publish_dropped += 1
            else:
                self.stats.publish_scheduled += 1
        except Exception as e:
            self.stats.publish_errors += 1
            logger.error("Failed to publish event: %s", e)

        logger.info(
            "Processed %s event from %s -> %s priority=%d brute_force=%s",
            ev.event_type, ev.src_ip, ev.dest_ip, event_priority(src), is_brute_force(src),
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("IOCs: %s", extract_iocs(src, unique=self.ioc_unique))
        return ev
