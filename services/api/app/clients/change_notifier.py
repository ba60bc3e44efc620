"""
Change notifiers — deliver row-change events to interested handlers.

Event shape:
  { "table": "posts" | "likes" | "follows",
    "operation": "insert" | "update" | "delete",
    "row": {...},          # new row (old row for deletes)
    "old": {...} | null }  # previous row on updates, when known

  LocalChangeNotifier  — in-process dispatch; publish() awaits the handlers.
                         Used for single-process deployments and tests.
  KafkaChangeNotifier  — publish() produces to the 'db-changes' topic; a
                         background consumer dispatches to handlers. One
                         consumer group per deployment, since the cache is
                         shared and each event only needs handling once.

A failing handler is logged and does not stop the others. Undecodable
messages are logged and skipped.
"""
import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from aiokafka import AIOKafkaConsumer

from app.clients.kafka_producer import publish_change
from app.config import settings

logger = logging.getLogger(__name__)

OPERATIONS = ("insert", "update", "delete")


@dataclass
class ChangeEvent:
    table: str
    operation: str
    row: dict
    old: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "operation": self.operation,
            "row": self.row,
            "old": self.old,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeEvent":
        if not isinstance(data, dict):
            raise ValueError(f"Change event must be a JSON object, got {type(data).__name__}")
        table = data.get("table")
        operation = data.get("operation")
        row = data.get("row")
        old = data.get("old")
        if not table or operation not in OPERATIONS or not isinstance(row, dict):
            raise ValueError(f"Malformed change event: {data!r}")
        if old is not None and not isinstance(old, dict):
            raise ValueError(f"Malformed change event: {data!r}")
        return cls(table=table, operation=operation, row=row, old=old)

    @classmethod
    def from_message(cls, raw: Optional[bytes]) -> "ChangeEvent":
        """Decode a raw Kafka message value. Raises ValueError on anything unusable."""
        if raw is None:
            raise ValueError("Empty change message")
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValueError(f"Undecodable change message: {exc}") from exc
        return cls.from_dict(data)


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class LocalChangeNotifier:
    def __init__(self) -> None:
        self._handlers: dict[str, list[ChangeHandler]] = defaultdict(list)

    def subscribe(self, table: str, handler: ChangeHandler) -> None:
        self._handlers[table].append(handler)
        handler_name = getattr(handler, "__name__", handler.__class__.__name__)
        logger.info("Registered %s change handler: %s", table, handler_name)

    async def dispatch(self, event: ChangeEvent) -> None:
        handlers = self._handlers.get(event.table)
        if not handlers:
            logger.debug("No handlers for %s %s", event.table, event.operation)
            return
        for handler in handlers:
            try:
                await handler(event)
            except Exception as exc:
                logger.error(
                    "Change handler failed for %s %s: %s",
                    event.table, event.operation, exc,
                )

    async def publish(self, event: ChangeEvent) -> None:
        await self.dispatch(event)

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None


class KafkaChangeNotifier(LocalChangeNotifier):
    def __init__(
        self,
        bootstrap_servers: str = settings.kafka_bootstrap_servers,
        topic: str = settings.kafka_topic_changes,
        group_id: str = settings.kafka_consumer_group,
    ) -> None:
        super().__init__()
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.group_id = group_id
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._task: Optional[asyncio.Task] = None

    async def publish(self, event: ChangeEvent) -> None:
        await publish_change(event.to_dict())

    async def start(self) -> None:
        if self._task is not None:
            return
        self._consumer = AIOKafkaConsumer(
            self.topic,
            bootstrap_servers=self.bootstrap_servers,
            group_id=self.group_id,
            auto_offset_reset="latest",
        )
        await self._consumer.start()
        self._task = asyncio.create_task(self._consume())
        logger.info("Change notifier listening on topic '%s'", self.topic)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._consumer is not None:
            await self._consumer.stop()
            self._consumer = None
        logger.info("Change notifier stopped")

    async def _consume(self) -> None:
        try:
            async for msg in self._consumer:
                try:
                    event = ChangeEvent.from_message(msg.value)
                except ValueError as exc:
                    logger.warning(
                        "Skipping change message at %s:%s: %s", msg.partition, msg.offset, exc
                    )
                    continue
                await self.dispatch(event)
        except Exception:
            logger.exception(
                "Change consumer on '%s' stopped; cache entries now expire by TTL only",
                self.topic,
            )
