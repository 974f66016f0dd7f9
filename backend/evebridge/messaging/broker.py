# evebridge/messaging/broker.py
import asyncio
import enum
import logging
from typing import Awaitable, Callable, Protocol

import nats
from nats.errors import Error as NatsError
from nats.js.api import ConsumerConfig, StorageType, StreamConfig
from nats.js.errors import BadRequestError

from ..config import Settings
from ..errors import StartupError

logger = logging.getLogger(__name__)


class Verdict(enum.Enum):
    ACK = "ack"
    NAK = "nak"
    TERM = "term"


# handler(payload, numero di consegna) → verdetto per il broker
DeliveryHandler = Callable[[bytes, int], Awaitable[Verdict]]


class Broker(Protocol):
    def publish_async(self, subject: str, data: bytes, headers: dict | None = None) -> asyncio.Future: ...

    async def publish_sync(self, subject: str, data: bytes, headers: dict | None = None): ...

    async def subscribe_durable(self, pattern: str, durable_name: str, handler: DeliveryHandler): ...


def stream_configs(cfg: Settings) -> list[StreamConfig]:
    return [
        StreamConfig(
            name=cfg.EVENTS_STREAM,
            description="Stream for normalized eve.json events",
            subjects=[f"{cfg.EVENTS_SUBJECT_PREFIX}.>"],
            storage=StorageType.FILE,
            max_age=cfg.EVENTS_MAX_AGE_SEC,
            max_bytes=cfg.EVENTS_MAX_BYTES,
            duplicate_window=cfg.DUPLICATE_WINDOW_SEC,
        ),
        StreamConfig(
            name=cfg.BAN_STREAM,
            description="Stream for IP ban actions",
            subjects=["ban.ip", "unban.ip"],
            storage=StorageType.FILE,
            max_age=cfg.BAN_MAX_AGE_SEC,
            duplicate_window=cfg.DUPLICATE_WINDOW_SEC,
        ),
    ]


class DurableSubscription:
    """Stop senza cancellare il consumer: drain lascia il cursore durevole sul server."""

    def __init__(self, sub):
        self._sub = sub

    async def unsubscribe(self):
        await self._sub.drain()


class NatsBroker:
    """JetStream su nats-py: publish fire-and-forget / con ack, subscription durevole con ack manuale."""

    def __init__(self, nc, js, cfg: Settings):
        self.nc = nc
        self.js = js
        self.cfg = cfg

    @classmethod
    async def connect(cls, cfg: Settings) -> "NatsBroker":
        async def on_disconnect():
            logger.warning("NATS disconnected")

        async def on_reconnect():
            logger.info("NATS reconnected to %s", nc.connected_url.netloc if nc.connected_url else "?")

        async def on_closed():
            logger.info("NATS connection closed")

        async def on_error(e):
            logger.error("NATS error: %s", e)

        try:
            nc = await nats.connect(
                servers=cfg.NATS_URL,
                name=cfg.NATS_CLIENT_NAME,
                connect_timeout=cfg.NATS_CONNECT_TIMEOUT_SEC,
                reconnect_time_wait=cfg.NATS_RECONNECT_WAIT_SEC,
                max_reconnect_attempts=cfg.NATS_MAX_RECONNECTS,
                allow_reconnect=True,
                disconnected_cb=on_disconnect,
                reconnected_cb=on_reconnect,
                closed_cb=on_closed,
                error_cb=on_error,
            )
        except (NatsError, OSError, asyncio.TimeoutError) as e:
            raise StartupError(f"cannot connect to NATS at {cfg.NATS_URL}: {e}") from e

        broker = cls(nc, nc.jetstream(), cfg)
        try:
            await broker.setup_streams()
        except NatsError as e:
            await nc.close()
            raise StartupError(f"cannot set up JetStream streams: {e}") from e
        return broker

    async def setup_streams(self):
        for sc in stream_configs(self.cfg):
            try:
                await self.js.add_stream(config=sc)
            except BadRequestError:
                # esiste già con config diversa → allinea
                await self.js.update_stream(config=sc)
            logger.info("JetStream stream %s ready (%s)", sc.name, ", ".join(sc.subjects))

    def publish_async(self, subject: str, data: bytes, headers: dict | None = None) -> asyncio.Future:
        return asyncio.ensure_future(self.js.publish(subject, data, headers=headers))

    async def publish_sync(self, subject: str, data: bytes, headers: dict | None = None):
        return await self.js.publish(subject, data, headers=headers)

    async def subscribe_durable(self, pattern: str, durable_name: str, handler: DeliveryHandler):
        nak_delay = self.cfg.CONSUMER_NAK_DELAY_SEC

        async def _cb(msg):
            try:
                delivered = msg.metadata.num_delivered
            except NatsError:
                # messaggio non JetStream: trattalo come prima consegna
                delivered = 1
            verdict = await handler(msg.data, delivered)
            if verdict is Verdict.ACK:
                await msg.ack()
            elif verdict is Verdict.TERM:
                await msg.term()
            else:
                await msg.nak(delay=nak_delay)

        sub = await self.js.subscribe(
            pattern,
            durable=durable_name,
            cb=_cb,
            manual_ack=True,
            config=ConsumerConfig(
                max_deliver=self.cfg.CONSUMER_MAX_DELIVER,
                ack_wait=self.cfg.CONSUMER_ACK_WAIT_SEC,
            ),
        )
        return DurableSubscription(sub)

    async def close(self):
        if self.nc is not None and not self.nc.is_closed:
            await self.nc.drain()
