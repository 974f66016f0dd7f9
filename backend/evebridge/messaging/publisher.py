# evebridge/messaging/publisher.py
import asyncio
import hashlib
import logging
import time

from ..errors import PublishError
from ..schemas import BanAction, NormalizedEvent
from .broker import Broker

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "events"
DEFAULT_EVENT_TYPE = "eve"
# publish async in volo oltre i quali si scarta
DEFAULT_MAX_PENDING = 4000


def subject_for(event_type: str, prefix: str = DEFAULT_PREFIX, default_type: str = DEFAULT_EVENT_TYPE) -> str:
    return f"{prefix}.{event_type or default_type}"


def dedup_headers(data: bytes) -> dict[str, str]:
    # payload identici entro la finestra duplicati vengono coalescati dal broker
    return {"Nats-Msg-Id": hashlib.sha256(data).hexdigest()}


class Publisher:
    """
    publish_event(): fire-and-forget, gli errori di trasporto finiscono solo nel log.
        Oltre max_pending publish in volo il record viene scartato (contato in `dropped`), mai bloccato.
    publish_ban_action()/publish_unban_action(): attendono l'ack JetStream.
    """

    def __init__(
        self,
        broker: Broker,
        prefix: str = DEFAULT_PREFIX,
        default_type: str = DEFAULT_EVENT_TYPE,
        max_pending: int = DEFAULT_MAX_PENDING,
    ):
        self.broker = broker
        self.prefix = prefix
        self.default_type = default_type
        self.max_pending = max_pending
        self.pending: set[asyncio.Future] = set()
        self.published = 0
        self.failed = 0
        self.dropped = 0

    def subject_for(self, event_type: str) -> str:
        return subject_for(event_type, self.prefix, self.default_type)

    def publish_event(self, ev: NormalizedEvent) -> str | None:
        """Subject usato, oppure None se il record è stato scartato per troppi publish in volo."""
        subject = self.subject_for(ev.event_type)
        if len(self.pending) >= self.max_pending:
            self.dropped += 1
            logger.warning("%d publishes in flight, dropping event for %s (dropped=%d)",
                           len(self.pending), subject, self.dropped)
            return None
        data = ev.model_dump_json().encode("utf-8")
        fut = self.broker.publish_async(subject, data, dedup_headers(data))
        self.pending.add(fut)
        fut.add_done_callback(lambda f, s=subject: self._settled(f, s))
        return subject

    def _settled(self, fut: asyncio.Future, subject: str):
        self.pending.discard(fut)
        if fut.cancelled():
            self.failed += 1
            logger.warning("Publish to %s cancelled", subject)
            return
        err = fut.exception()
        if err is not None:
            self.failed += 1
            logger.error("Failed to publish event to %s: %s", subject, err)
        else:
            self.published += 1

    async def flush(self, timeout: float = 5.0) -> bool:
        """Attende i publish in volo; False se il timeout scade prima."""
        if not self.pending:
            return True
        done, not_done = await asyncio.wait(set(self.pending), timeout=timeout)
        if not_done:
            logger.warning("%d publish(es) still pending after %.1fs", len(not_done), timeout)
            return False
        return True

    async def publish_ban_action(self, ip: str, reason: str = ""):
        return await self._publish_action("ban", ip, reason)

    async def publish_unban_action(self, ip: str, reason: str = ""):
        return await self._publish_action("unban", ip, reason)

    async def _publish_action(self, action: str, ip: str, reason: str):
        msg = BanAction(action=action, ip=ip, reason=reason, timestamp=int(time.time()))
        subject = f"{action}.ip"
        data = msg.model_dump_json().encode("utf-8")
        try:
            return await self.broker.publish_sync(subject, data, dedup_headers(data))
        except Exception as e:
            logger.error("Failed to publish %s action for %s: %s", action, ip, e)
            raise PublishError(f"{action} {ip} not acknowledged: {e}") from e
