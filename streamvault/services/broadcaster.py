"""Progress fan-out.

The broadcaster is a plain fan-out primitive: every subscriber receives every
event it is still connected for, and the subscriber decides which owner it
cares about. Delivery is best-effort and at most once; there is no replay
for events published while a subscriber was disconnected.
"""

import enum
import json
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import redis
import structlog

from streamvault.core.config import settings

logger = structlog.get_logger()


class EventKind(str, enum.Enum):
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    job_id: str
    owner_id: str
    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "kind": self.kind.value,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProgressEvent":
        return cls(
            job_id=data["job_id"],
            owner_id=data["owner_id"],
            kind=EventKind(data["kind"]),
            payload=data.get("payload") or {},
        )


class Subscription:
    """A single subscriber's view of the event stream.

    ``owner_id`` filters events on the subscriber side; ``None`` receives all.
    """

    def __init__(self, owner_id: str | None = None) -> None:
        self.owner_id = owner_id

    def _next_raw(self, timeout: float) -> ProgressEvent | None:
        raise NotImplementedError

    def get(self, timeout: float = 1.0) -> ProgressEvent | None:
        """Return the next event for this subscriber, or None after ``timeout``."""
        deadline = time.monotonic() + timeout
        while True:
            remaining = max(deadline - time.monotonic(), 0.0)
            event = self._next_raw(remaining)
            if event is None:
                return None
            if self.owner_id is None or event.owner_id == self.owner_id:
                return event
            if remaining <= 0:
                return None

    def close(self) -> None:
        pass

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Broadcaster(Protocol):
    def publish(self, event: ProgressEvent) -> None: ...

    def subscribe(self, owner_id: str | None = None) -> Subscription: ...


class _MemorySubscription(Subscription):
    def __init__(self, broadcaster: "InMemoryBroadcaster", owner_id: str | None, maxsize: int) -> None:
        super().__init__(owner_id)
        self._broadcaster = broadcaster
        self._queue: queue.Queue[ProgressEvent] = queue.Queue(maxsize=maxsize)

    def offer(self, event: ProgressEvent) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            return False

    def _next_raw(self, timeout: float) -> ProgressEvent | None:
        try:
            return self._queue.get(timeout=timeout) if timeout > 0 else self._queue.get_nowait()
        except queue.Empty:
            return None

    def close(self) -> None:
        self._broadcaster._remove(self)


class InMemoryBroadcaster:
    """In-process fan-out with a bounded FIFO queue per subscriber.

    Publishing holds a lock across the fan-out so events from one publisher
    reach every subscriber in the order they were published.
    """

    def __init__(self, maxsize: int = 1000) -> None:
        self._maxsize = maxsize
        self._lock = threading.Lock()
        self._subscribers: list[_MemorySubscription] = []

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            for subscriber in self._subscribers:
                if not subscriber.offer(event):
                    logger.warning("progress_event_dropped", job_id=event.job_id, kind=event.kind.value)

    def subscribe(self, owner_id: str | None = None) -> Subscription:
        subscription = _MemorySubscription(self, owner_id, self._maxsize)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def _remove(self, subscription: _MemorySubscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class _RedisSubscription(Subscription):
    def __init__(self, client: redis.Redis, channel: str, owner_id: str | None) -> None:
        super().__init__(owner_id)
        self._pubsub = client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(channel)

    def _next_raw(self, timeout: float) -> ProgressEvent | None:
        message = self._pubsub.get_message(timeout=timeout)
        if message is None or message.get("type") != "message":
            return None
        try:
            return ProgressEvent.from_dict(json.loads(message["data"]))
        except (ValueError, KeyError) as e:
            logger.warning("progress_event_invalid", error=str(e))
            return None

    def close(self) -> None:
        self._pubsub.close()


class RedisBroadcaster:
    """Fan-out over a Redis pub/sub channel shared by the API and the workers."""

    def __init__(self, client: redis.Redis | None = None, channel: str | None = None) -> None:
        self.client = client or redis.from_url(settings.redis_url)
        self.channel = channel or settings.progress_channel

    def publish(self, event: ProgressEvent) -> None:
        try:
            self.client.publish(self.channel, json.dumps(event.to_dict()))
        except redis.RedisError as e:
            logger.error("progress_publish_failed", job_id=event.job_id, kind=event.kind.value, error=str(e))

    def subscribe(self, owner_id: str | None = None) -> Subscription:
        return _RedisSubscription(self.client, self.channel, owner_id)


_broadcaster: Broadcaster | None = None


def get_broadcaster() -> Broadcaster:
    global _broadcaster
    if _broadcaster is None:
        if settings.broadcaster_backend == "memory":
            _broadcaster = InMemoryBroadcaster()
        else:
            _broadcaster = RedisBroadcaster()
    return _broadcaster
