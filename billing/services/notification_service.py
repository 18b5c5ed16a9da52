"""Notification Service - fire-and-forget business events.

Events are put on a bounded in-memory queue and delivered by a single
consumer task. ``emit`` never blocks and never raises: when the queue is
full the event is dropped and counted. Sink failures are logged and do not
reach the code that emitted the event.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """Structured business event."""

    name: str
    message: str
    level: str = "info"
    user_id: int | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)


class EventSink(Protocol):
    async def send(self, event: Event) -> None: ...


class LoggingSink:
    """Writes events to the application log."""

    async def send(self, event: Event) -> None:
        log = logging.ERROR if event.level == "error" else logging.INFO
        logger.log(log, f"[{event.name}] {event.message} user={event.user_id} {event.fields}")


class LokiSink:
    """Pushes events to Grafana Loki (``/loki/api/v1/push``)."""

    def __init__(
        self,
        base_url: str,
        service_name: str,
        environment: str,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.push_url = f"{base_url.rstrip('/')}/loki/api/v1/push"
        self.service_name = service_name
        self.environment = environment
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def build_payload(self, event: Event) -> dict[str, Any]:
        labels = {
            "service": self.service_name,
            "environment": self.environment,
            "level": event.level,
            "event": event.name,
        }
        if event.user_id is not None:
            labels["userId"] = str(event.user_id)
        line = {
            "timestamp": f"{event.timestamp.isoformat()}Z",
            "level": event.level,
            "message": event.message,
            "service": self.service_name,
            "environment": self.environment,
            "event": event.name,
            "userId": event.user_id,
            **event.fields,
        }
        return {
            "streams": [
                {
                    "stream": labels,
                    "values": [[str(time.time_ns()), json.dumps(line, default=str)]],
                }
            ]
        }

    async def send(self, event: Event) -> None:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await client.post(self.push_url, json=self.build_payload(event))
            response.raise_for_status()


class NotificationDispatcher:
    """Bounded, non-blocking event queue with one delivery task."""

    def __init__(self, sinks: list[EventSink] | None = None, maxsize: int = 1000) -> None:
        self.sinks: list[EventSink] = sinks if sinks is not None else [LoggingSink()]
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None
        self.dropped = 0
        self.failed = 0
        self.delivered = 0

    def emit(
        self,
        name: str,
        message: str,
        level: str = "info",
        user_id: int | None = None,
        **fields: Any,
    ) -> None:
        """Queue an event. Drops it when the queue is full."""
        event = Event(name=name, message=message, level=level, user_id=user_id, fields=fields)
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Notification queue full, dropped {name} event (dropped={self.dropped})")

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Deliver what is queued (up to ``drain_timeout``), then stop."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Stopping notifications with {self.pending} undelivered events")
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def drain(self) -> None:
        """Deliver every queued event inline (no worker task needed)."""
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: Event) -> None:
        for sink in self.sinks:
            try:
                await sink.send(event)
                self.delivered += 1
            except Exception as e:
                self.failed += 1
                logger.error(f"Notification sink {type(sink).__name__} failed for {event.name}: {e}")


def build_dispatcher(settings: Any) -> NotificationDispatcher:
    """Dispatcher with the Loki sink when enabled, else log-only."""
    sinks: list[EventSink] = [LoggingSink()]
    if settings.loki_url and (settings.loki_enabled or settings.is_production):
        sinks.append(
            LokiSink(
                base_url=settings.loki_url,
                service_name=settings.service_name,
                environment=settings.environment,
            )
        )
    return NotificationDispatcher(sinks=sinks, maxsize=settings.notification_queue_size)


_dispatcher: NotificationDispatcher | None = None


def get_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher (created lazily, log-only until configured)."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


def set_dispatcher(dispatcher: NotificationDispatcher | None) -> None:
    global _dispatcher
    _dispatcher = dispatcher
