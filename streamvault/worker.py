"""
StreamVault Worker - Consumes run triggers from RabbitMQ and runs the analysis pipeline.
"""

import signal
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Callable

import pika
import structlog

from streamvault.core.config import settings
from streamvault.core.errors import JobNotFound
from streamvault.core.messaging import InvalidTrigger, RunTrigger, declare_topology
from streamvault.models import session_scope
from streamvault.services.job_store import JobStore
from streamvault.services.views import get_view_counter
from streamvault.tasks.pipeline import run_job

logger = structlog.get_logger()

shutdown_requested = False


def signal_handler(signum, frame):
    global shutdown_requested
    logger.info("shutdown_requested", signal=signum)
    shutdown_requested = True


class JobArena:
    """Runs at most one pipeline per job id on a bounded thread pool.

    Acks and nacks are handed back to the connection's thread, since pika
    channels must not be used from worker threads.
    """

    def __init__(
        self,
        connection,
        channel,
        concurrency: int | None = None,
        runner: Callable[[str], dict] = run_job,
    ) -> None:
        self.connection = connection
        self.channel = channel
        self.runner = runner
        self._pool = ThreadPoolExecutor(
            max_workers=concurrency or settings.worker_concurrency, thread_name_prefix="job"
        )
        self._lock = threading.Lock()
        self._in_flight: dict[str, Future] = {}

    @property
    def busy(self) -> bool:
        with self._lock:
            return bool(self._in_flight)

    def submit(self, job_id: str, delivery_tag: int) -> bool:
        """Schedule a run. Returns False if the job already has one in flight."""
        with self._lock:
            if job_id in self._in_flight:
                return False
            self._in_flight[job_id] = self._pool.submit(self._run, job_id, delivery_tag)
        return True

    def _run(self, job_id: str, delivery_tag: int) -> None:
        try:
            result = self.runner(job_id)
            logger.info("job_finished", job_id=job_id, status=result.get("status"))
            self._settle(delivery_tag, ack=True)
        except JobNotFound:
            logger.error("job_not_found", job_id=job_id)
            self._settle(delivery_tag, ack=True)
        except Exception as e:
            logger.error("processing_error", job_id=job_id, error=str(e))
            self._settle(delivery_tag, ack=False)
        finally:
            with self._lock:
                self._in_flight.pop(job_id, None)

    def _settle(self, delivery_tag: int, ack: bool) -> None:
        if ack:
            callback = partial(self.channel.basic_ack, delivery_tag=delivery_tag)
        else:
            callback = partial(self.channel.basic_nack, delivery_tag=delivery_tag, requeue=True)
        self.connection.add_callback_threadsafe(callback)

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False)


def on_message(channel, method, properties, body, arena: JobArena):
    """Handle an incoming run trigger."""
    try:
        trigger = RunTrigger.decode(body)
    except InvalidTrigger as e:
        logger.error("invalid_message", error=str(e))
        channel.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
        return

    job_id = trigger.job_id

    logger.info("job_received", job_id=job_id)

    if not arena.submit(job_id, method.delivery_tag):
        # The in-flight run covers this trigger.
        logger.info("duplicate_trigger_skipped", job_id=job_id)
        channel.basic_ack(delivery_tag=method.delivery_tag)


def flush_views() -> int:
    try:
        with session_scope() as db:
            return get_view_counter().flush(JobStore(db))
    except Exception as e:
        logger.error("view_flush_failed", error=str(e))
        return 0


def main():
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("worker_starting", concurrency=settings.worker_concurrency)

    while not shutdown_requested:
        arena = None
        try:
            params = pika.URLParameters(settings.rabbitmq_url)
            connection = pika.BlockingConnection(params)
            channel = connection.channel()

            declare_topology(channel)
            channel.basic_qos(prefetch_count=settings.worker_concurrency)

            arena = JobArena(connection, channel)
            channel.basic_consume(
                queue=settings.process_queue,
                on_message_callback=partial(on_message, arena=arena),
            )

            logger.info("worker_ready", queue=settings.process_queue)

            last_flush = time.monotonic()
            while not shutdown_requested:
                connection.process_data_events(time_limit=1)
                if time.monotonic() - last_flush >= settings.view_flush_interval_seconds:
                    flush_views()
                    last_flush = time.monotonic()

            channel.stop_consuming()
            # Let in-flight runs finish so their acks go out on this connection.
            while arena.busy:
                connection.process_data_events(time_limit=1)
            flush_views()
            connection.close()

        except pika.exceptions.AMQPConnectionError as e:
            logger.error("rabbitmq_connection_error", error=str(e))
            if not shutdown_requested:
                time.sleep(5)

        except Exception as e:
            logger.error("worker_error", error=str(e))
            if not shutdown_requested:
                time.sleep(5)

        finally:
            if arena is not None:
                arena.shutdown()

    logger.info("worker_stopped")


if __name__ == "__main__":
    main()
