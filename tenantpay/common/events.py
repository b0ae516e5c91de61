"""Kafka envelope and producer helper.

Ledger outbox rows carry a serialized `EventEnvelope`; the publisher loop
rebuilds the envelope and sends it through `KafkaBus`.
"""

import json
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from aiokafka import AIOKafkaProducer
from pydantic import BaseModel, Field

from tenantpay.common.config import settings


TRANSACTIONS_RECORDED_TOPIC = "transactions.recorded"


class EventEnvelope(BaseModel):
    """Canonical event shape sent across Kafka topics."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    aggregate_id: str
    occurred_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    trace_id: str
    payload: dict[str, Any]


class KafkaBus:
    """Lazy Kafka producer used by the outbox relay.

    Records are keyed by `aggregate_id` so every event of one transaction lands
    on the same partition, in write order.
    """

    def __init__(self, bootstrap_servers: str | None = None) -> None:
        self.bootstrap_servers = bootstrap_servers or settings.kafka_bootstrap_servers
        self._producer: AIOKafkaProducer | None = None

    async def producer(self) -> AIOKafkaProducer:
        if self._producer is None:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                acks="all",
                enable_idempotence=True,
                key_serializer=lambda key: key.encode("utf-8"),
                value_serializer=lambda value: json.dumps(value).encode("utf-8"),
            )
            await self._producer.start()
        return self._producer

    async def publish(self, topic: str, event: EventEnvelope) -> None:
        producer = await self.producer()
        await producer.send_and_wait(
            topic,
            event.model_dump(),
            key=event.aggregate_id,
            headers=[("trace_id", event.trace_id.encode("utf-8"))],
        )

    async def close(self) -> None:
        if self._producer:
            await self._producer.stop()
            self._producer = None
