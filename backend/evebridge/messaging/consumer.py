# evebridge/messaging/consumer.py
import asyncio
import logging

from pydantic import ValidationError

from ..errors import HandoffError
from ..schemas import NormalizedEvent
from ..stream.broadcaster import Broadcaster
from .broker import Broker, Verdict

logger = logging.getLogger(__name__)


class DurableConsumer:
    """
    Unica subscription durevole per processo: decodifica ogni messaggio e lo passa
    al broadcaster. Ack dopo l'hand-off (non dopo la consegna ai viewer),
    nak se l'hand-off fallisce, term raggiunto il numero massimo di consegne.
    """

    def __init__(
        self,
        broker: Broker,
        broadcaster: Broadcaster,
        durable_name: str,
        subject_pattern: str = "events.>",
        max_deliver: int = 5,
    ):
        self.broker = broker
        self.broadcaster = broadcaster
        self.durable_name = durable_name
        self.subject_pattern = subject_pattern
        self.max_deliver = max_deliver
        self.sub = None
        self.stats = {"acked": 0, "naked": 0, "terminated": 0}

    @property
    def running(self) -> bool:
        return self.sub is not None

    async def start(self):
        if self.sub is not None:
            return self.sub
        self.sub = await self.broker.subscribe_durable(self.subject_pattern, self.durable_name, self.handle)
        logger.info("Durable consumer %s subscribed to %s", self.durable_name, self.subject_pattern)
        return self.sub

    def hand_off(self, data: bytes) -> int:
        try:
            ev = NormalizedEvent.model_validate_json(data)
        except ValidationError as e:
            raise HandoffError(f"undecodable event: {e.error_count()} error(s)") from e
        try:
            return self.broadcaster.publish(ev)
        except Exception as e:
            raise HandoffError(f"broadcast failed: {e}") from e

    async def handle(self, data: bytes, delivered: int) -> Verdict:
        try:
            self.hand_off(data)
        except HandoffError as e:
            # hand-off non recuperabile: stop alle riconsegne invece di un loop infinito
            if delivered >= self.max_deliver:
                self.stats["terminated"] += 1
                logger.error("Dropping message after %d deliveries: %s", delivered, e)
                return Verdict.TERM
            self.stats["naked"] += 1
            logger.warning("Hand-off failed (delivery %d), requesting redelivery: %s", delivered, e)
            return Verdict.NAK
        self.stats["acked"] += 1
        return Verdict.ACK

    async def stop(self, grace: float = 5.0) -> bool:
        """Unsubscribe entro `grace` secondi; False se scade il timeout."""
        sub, self.sub = self.sub, None
        if sub is None:
            return True
        try:
            await asyncio.wait_for(sub.unsubscribe(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning("Durable consumer %s did not unsubscribe within %.1fs", self.durable_name, grace)
            return False
        except Exception as e:
            logger.error("Unsubscribe failed for %s: %s", self.durable_name, e)
            return False
        logger.info("Durable consumer %s unsubscribed", self.durable_name)
        return True
