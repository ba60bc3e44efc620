"""
Async Kafka producer.

Publishes row-change events to the 'db-changes' topic:
  { table, operation, row, old }
emitted by the write endpoints after the transaction commits.
Consumed by: KafkaChangeNotifier (feed cache invalidation).

Events are keyed by table so changes to one table stay ordered.
"""
import json
import logging
from typing import Optional

from aiokafka import AIOKafkaProducer

from app.config import settings

logger = logging.getLogger(__name__)

_producer: Optional[AIOKafkaProducer] = None


async def init_kafka() -> None:
    global _producer
    _producer = AIOKafkaProducer(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        key_serializer=lambda k: k.encode("utf-8"),
        value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
        acks="all",          # wait for all in-sync replicas
        enable_idempotence=True,
    )
    await _producer.start()
    logger.info(
        "Kafka producer started → %s", settings.kafka_bootstrap_servers
    )


async def stop_kafka() -> None:
    global _producer
    if _producer:
        await _producer.stop()
        _producer = None


def get_producer() -> AIOKafkaProducer:
    if _producer is None:
        raise RuntimeError("Kafka producer not initialised")
    return _producer


async def publish_change(payload: dict) -> None:
    """Emit one row-change event and wait for the broker to acknowledge it."""
    producer = get_producer()
    await producer.send_and_wait(
        settings.kafka_topic_changes, payload, key=payload["table"]
    )
    logger.debug(
        "Published %s %s event", payload["table"], payload["operation"]
    )
