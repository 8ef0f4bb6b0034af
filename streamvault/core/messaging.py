import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

import pika
import structlog
from pika.exceptions import AMQPChannelError, AMQPConnectionError

from .config import settings

logger = structlog.get_logger()

PROCESS_EXCHANGE = "media"
PROCESS_ROUTING_KEY = "process"


class InvalidTrigger(ValueError):
    pass


@dataclass(frozen=True)
class RunTrigger:
    """Body of a ``media.process`` message: run the pipeline for one job."""

    job_id: str
    owner_id: str | None = None
    triggered_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def encode(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def decode(cls, body: bytes | str) -> "RunTrigger":
        try:
            message = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidTrigger(f"Body is not JSON: {e}") from e
        if not isinstance(message, dict) or not message.get("job_id"):
            raise InvalidTrigger("Message has no job_id")
        return cls(
            job_id=str(message["job_id"]),
            owner_id=message.get("owner_id"),
            triggered_at=message.get("triggered_at") or "",
        )


def declare_topology(channel) -> None:
    channel.exchange_declare(exchange=PROCESS_EXCHANGE, exchange_type="direct", durable=True)
    channel.queue_declare(queue=settings.process_queue, durable=True)
    channel.queue_bind(queue=settings.process_queue, exchange=PROCESS_EXCHANGE, routing_key=PROCESS_ROUTING_KEY)


class MessagePublisher:
    """Publishes run triggers; reconnects once if the broker dropped the connection."""

    def __init__(self) -> None:
        self._connection: pika.BlockingConnection | None = None
        self._channel = None

    def _connect(self) -> None:
        if self._connection is None or self._connection.is_closed:
            self._connection = pika.BlockingConnection(pika.URLParameters(settings.rabbitmq_url))
            self._channel = self._connection.channel()
            declare_topology(self._channel)

    def _publish(self, trigger: RunTrigger) -> None:
        self._connect()
        self._channel.basic_publish(
            exchange=PROCESS_EXCHANGE,
            routing_key=PROCESS_ROUTING_KEY,
            body=trigger.encode(),
            properties=pika.BasicProperties(
                delivery_mode=2,  # persistent
                content_type="application/json",
                message_id=trigger.job_id,
            ),
        )

    def publish_run_trigger(self, job_id: str, owner_id: str) -> None:
        trigger = RunTrigger(job_id=job_id, owner_id=owner_id)
        try:
            self._publish(trigger)
        except (AMQPConnectionError, AMQPChannelError) as e:
            logger.warning("publisher_reconnecting", job_id=job_id, error=str(e))
            self._connection = None
            self._publish(trigger)

        logger.info("run_trigger_published", job_id=job_id, queue=settings.process_queue)

    def close(self) -> None:
        if self._connection and not self._connection.is_closed:
            self._connection.close()


_publisher: MessagePublisher | None = None


def get_publisher() -> MessagePublisher:
    global _publisher
    if _publisher is None:
        _publisher = MessagePublisher()
    return _publisher
