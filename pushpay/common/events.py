"""Payment lifecycle events and the batched, fire-and-forget event queue.

Producers only call `EventQueue.enqueue`. A background task owned by the app
lifespan drains the queue in batches into a sink (the document store or a
Kafka topic). A failed flush puts the batch back at the head of the queue.
"""

import asyncio
import inspect
import json
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

from aiokafka import AIOKafkaProducer
from pydantic import BaseModel, Field

from pushpay.common.logging import logger, trace_id_ctx
from pushpay.common.metrics import events_dropped_total, events_flushed_total, events_requeued_total


class PaymentEvent(BaseModel):
    """Canonical analytics event for one step of a payment's lifecycle."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event: str
    payment_id: str | None = None
    user_id: str | None = None
    amount: float | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    trace_id: str = Field(default_factory=trace_id_ctx.get)
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_document(self) -> dict[str, Any]:
        """Field names as stored in the `payment_analytics` collection."""

        return {
            "eventId": self.event_id,
            "event": self.event,
            "paymentId": self.payment_id,
            "userId": self.user_id,
            "amount": self.amount,
            "details": self.details,
            "traceId": self.trace_id,
            "timestamp": self.timestamp,
        }


EventSink = Callable[[PaymentEvent], Awaitable[None] | None]


class EventQueue:
    """Bounded in-process queue with batch flushing and re-queue on failure."""

    def __init__(
        self,
        sink: EventSink,
        batch_size: int = 10,
        max_size: int = 10_000,
        service_name: str = "pushpay-gateway",
    ) -> None:
        self.sink = sink
        self.batch_size = batch_size
        self.max_size = max_size
        self.service_name = service_name
        self._queue: deque[PaymentEvent] = deque()

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(self, event: PaymentEvent) -> None:
        """Queue one event. Never raises; on overflow the oldest event is dropped."""

        try:
            if len(self._queue) >= self.max_size:
                dropped = self._queue.popleft()
                events_dropped_total.labels(service=self.service_name).inc()
                logger.warning("event queue full, dropped event=%s event_id=%s", dropped.event, dropped.event_id)
            self._queue.append(event)
        except Exception as exc:
            logger.warning("non-blocking event enqueue failure: %s", exc)

    async def flush(self) -> int:
        """Deliver one batch; returns the number delivered (0 on failure)."""

        if not self._queue:
            return 0
        batch = [self._queue.popleft() for _ in range(min(self.batch_size, len(self._queue)))]
        try:
            for event in batch:
                result = self.sink(event)
                if inspect.isawaitable(result):
                    await result
        except Exception as exc:
            # Whole batch goes back, so already-delivered events may repeat.
            self._queue.extendleft(reversed(batch))
            events_requeued_total.labels(service=self.service_name).inc(len(batch))
            logger.warning("event batch flush failed, will retry size=%s error=%s", len(batch), exc)
            return 0
        events_flushed_total.labels(service=self.service_name).inc(len(batch))
        logger.debug("event batch flushed size=%s", len(batch))
        return len(batch)

    async def run_flusher(self, interval_seconds: float = 5.0) -> None:
        """Flush one batch per interval forever; owned by the app lifespan."""

        while True:
            await asyncio.sleep(interval_seconds)
            await self.flush()


class KafkaBus:
    """Lazy Kafka producer wrapper used when analytics events go to a topic."""

    def __init__(self, bootstrap_servers: str, topic: str) -> None:
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self._producer: AIOKafkaProducer | None = None

    async def producer(self) -> AIOKafkaProducer:
        if self._producer is None:
            self._producer = AIOKafkaProducer(bootstrap_servers=self.bootstrap_servers)
            await self._producer.start()
        return self._producer

    async def publish(self, event: PaymentEvent) -> None:
        producer = await self.producer()
        await producer.send_and_wait(
            self.topic,
            json.dumps(event.to_document()).encode("utf-8"),
            key=(event.payment_id or event.event_id).encode("utf-8"),
        )

    async def close(self) -> None:
        if self._producer:
            await self._producer.stop()
            self._producer = None
