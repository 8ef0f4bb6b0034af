import redis
import structlog

from streamvault.core.config import settings
from streamvault.services.job_store import JobStore

logger = structlog.get_logger()

KEY_PREFIX = "views:"


class ViewCounter:
    """Redis-buffered view counts, flushed to the job store by the worker.

    Counts are eventually consistent; a read never waits on the database.
    """

    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or redis.from_url(settings.redis_url)

    def record(self, job_id: str) -> None:
        try:
            self.client.incr(f"{KEY_PREFIX}{job_id}")
        except redis.RedisError as e:
            logger.warning("view_count_failed", job_id=job_id, error=str(e))

    def flush(self, store: JobStore) -> int:
        """Move buffered counts into the job store. Returns the number of views applied."""
        applied = 0
        for key in self.client.scan_iter(match=f"{KEY_PREFIX}*"):
            if isinstance(key, bytes):
                key = key.decode()
            value = self.client.getdel(key)
            if not value:
                continue
            count = int(value)
            store.add_views(key[len(KEY_PREFIX):], count)
            applied += count

        if applied:
            logger.info("view_counts_flushed", views=applied)
        return applied


_view_counter: ViewCounter | None = None


def get_view_counter() -> ViewCounter:
    global _view_counter
    if _view_counter is None:
        _view_counter = ViewCounter()
    return _view_counter
