import asyncio
import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from evebridge.messaging.broker import Verdict
from evebridge.schemas import NormalizedEvent, TenantContext

ALERT_LINE = json.dumps({
    "timestamp": "2024-01-01T00:00:00.000000-0000",
    "event_type": "alert",
    "src_ip": "203.0.113.5",
    "dest_ip": "10.0.0.1",
    "alert": {
        "signature": "SCAN SSH brute force login attempt",
        "severity": 2,
        "category": "Attempted Privilege Gain",
        "action": "allowed",
    },
}).encode()


class FakeSubscription:
    def __init__(self, hang: float = 0.0):
        self.hang = hang
        self.unsubscribed = False

    async def unsubscribe(self):
        if self.hang:
            await asyncio.sleep(self.hang)
        self.unsubscribed = True


class FakeBroker:
    """Broker in memoria: registra i publish e consegna a mano ai subscriber."""

    def __init__(
        self,
        fail_async: bool = False,
        fail_sync: bool = False,
        unsubscribe_hang: float = 0.0,
        hold_async: bool = False,
    ):
        self.fail_async = fail_async
        self.hold_async = hold_async
        self.fail_sync = fail_sync
        self.unsubscribe_hang = unsubscribe_hang
        self.published = []
        self.subscriptions = []
        self.verdicts = []
        self.on_publish = None
        self.closed = False
        self._seq = 0

    def publish_async(self, subject, data, headers=None):
        fut = asyncio.get_running_loop().create_future()
        if self.hold_async:
            # broker lento: ack mai arrivato
            self.published.append((subject, data, headers))
        elif self.fail_async:
            fut.set_exception(ConnectionError("nats: connection closed"))
        else:
            self.published.append((subject, data, headers))
            self._seq += 1
            fut.set_result(SimpleNamespace(stream="EVENTS", seq=self._seq))
        if self.on_publish is not None:
            self.on_publish(subject, data)
        return fut

    async def publish_sync(self, subject, data, headers=None):
        if self.fail_sync:
            raise TimeoutError("nats: timeout")
        self.published.append((subject, data, headers))
        self._seq += 1
        return SimpleNamespace(stream="BAN_ACTIONS", seq=self._seq)

    async def subscribe_durable(self, pattern, durable_name, handler):
        sub = FakeSubscription(self.unsubscribe_hang)
        self.subscriptions.append((pattern, durable_name, handler, sub))
        return sub

    async def deliver(self, data: bytes, delivered: int = 1) -> Verdict:
        _, _, handler, _ = self.subscriptions[-1]
        verdict = await handler(data, delivered)
        self.verdicts.append(verdict)
        return verdict

    async def close(self):
        self.closed = True


def make_event(**overrides) -> NormalizedEvent:
    fields = {
        "tenant_id": 1,
        "timestamp": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "event_type": "alert",
        "src_ip": "203.0.113.5",
        "src_port": 51234,
        "dest_ip": "10.0.0.1",
        "dest_port": 22,
        "protocol": "TCP",
        "signature": "SCAN SSH brute force login attempt",
        "severity": 2,
        "category": "Attempted Privilege Gain",
        "action": "allowed",
        "raw_payload": ALERT_LINE.decode(),
        "created_at": datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc),
    }
    fields.update(overrides)
    return NormalizedEvent(**fields)


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def tenant():
    return TenantContext(tenant_id=1)


@pytest.fixture
def alert_line():
    return ALERT_LINE


@pytest.fixture
def event_factory():
    return make_event
