"""
Fan-out of snapshots to connected stream subscribers.

Each subscriber holds at most one pending frame: a newer snapshot replaces an undelivered
older one, so a slow reader never builds a backlog and never sees two frames from one tick.
Keepalives run on their own deadline, unaffected by data pushes.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from infra_dashboard.core.context import subscriber_id_ctx
from infra_dashboard.domain.schemas.snapshot import Snapshot

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": keepalive\n\n"


def format_event(payload: dict) -> str:
    return f"data: {json.dumps(payload, separators=(',', ':'), default=str)}\n\n"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SubscriberState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Subscriber:
    def __init__(
        self,
        subscriber_id: str,
        keepalive_interval_sec: float,
        on_open: Callable[["Subscriber"], None],
        on_closed: Callable[["Subscriber"], None],
    ) -> None:
        self.id = subscriber_id
        self.state = SubscriberState.CONNECTING
        self._keepalive = keepalive_interval_sec
        self._on_open = on_open
        self._on_closed = on_closed
        self._inbox: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=1)

    @property
    def accepting(self) -> bool:
        return self.state in (SubscriberState.CONNECTING, SubscriberState.OPEN)

    def _replace(self, frame: Optional[str]) -> None:
        if self._inbox.full():
            self._inbox.get_nowait()
        self._inbox.put_nowait(frame)

    def offer(self, frame: str) -> bool:
        """Queue a frame, dropping any undelivered one. False once the subscriber is closing."""
        if not self.accepting:
            return False
        self._replace(frame)
        return True

    def close(self) -> None:
        if self.accepting:
            self.state = SubscriberState.CLOSING
            self._replace(None)

    async def stream(self) -> AsyncIterator[str]:
        """
        Frames for the transport: a "connected" event, then snapshot frames and keepalive
        comments until the consumer goes away (cancellation) or the hub closes us.
        Registration with the hub happens on first iteration, so a stream that is never
        consumed never holds a slot.
        """
        if self.state != SubscriberState.CONNECTING:
            return
        # Scoped to the consuming task; the transport runs one task per stream.
        subscriber_id_ctx.set(self.id)
        loop = asyncio.get_running_loop()
        try:
            self.state = SubscriberState.OPEN
            self._on_open(self)
            logger.info("subscriber_connected")
            yield format_event({"type": "connected", "timestamp": _now_iso(), "subscriberId": self.id})
            next_keepalive = loop.time() + self._keepalive
            while True:
                timeout = max(0.0, next_keepalive - loop.time())
                try:
                    frame = await asyncio.wait_for(self._inbox.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    yield KEEPALIVE_FRAME
                    next_keepalive = loop.time() + self._keepalive
                    continue
                if frame is None:
                    break
                yield frame
        finally:
            self.state = SubscriberState.CLOSED
            self._on_closed(self)
            logger.info("subscriber_disconnected")


class BroadcastHub:
    """Registry of live subscribers. Single event loop; no locking needed."""

    def __init__(self, keepalive_interval_sec: float = 5.0, metrics=None) -> None:
        self._keepalive = keepalive_interval_sec
        self._metrics = metrics
        self._subscribers: dict[str, Subscriber] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _report_count(self) -> None:
        if self._metrics is not None:
            self._metrics.set_gauge("stream_subscribers", len(self._subscribers))

    def subscribe(self) -> Subscriber:
        return Subscriber(
            uuid.uuid4().hex,
            self._keepalive,
            on_open=self._register,
            on_closed=self.unsubscribe,
        )

    def _register(self, subscriber: Subscriber) -> None:
        self._subscribers[subscriber.id] = subscriber
        self._report_count()

    def unsubscribe(self, subscriber: Subscriber) -> None:
        subscriber.close()
        if self._subscribers.pop(subscriber.id, None) is not None:
            self._report_count()

    def _fan_out(self, frame: str) -> int:
        delivered = 0
        for subscriber in list(self._subscribers.values()):
            if subscriber.offer(frame):
                delivered += 1
            else:
                self.unsubscribe(subscriber)
        return delivered

    def publish(self, snapshot: Snapshot) -> int:
        """Serialize once, hand the same frame to every open subscriber. Returns the delivery count."""
        frame = format_event({"type": "update", "snapshot": snapshot.to_wire()})
        delivered = self._fan_out(frame)
        if self._metrics is not None:
            self._metrics.increment("snapshot_deliveries", delivered)
        logger.debug("snapshot_published", extra={"version": snapshot.version, "delivered": delivered})
        return delivered

    def publish_error(self, message: str) -> int:
        return self._fan_out(format_event({"type": "error", "timestamp": _now_iso(), "message": message}))

    def close_all(self) -> None:
        for subscriber in list(self._subscribers.values()):
            self.unsubscribe(subscriber)
