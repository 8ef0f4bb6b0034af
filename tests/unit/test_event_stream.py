"""
Unit tests for the SSE generator in streamvault/api/routers/jobs.py

The generator is driven directly under anyio with a fake request and
subscription, so no HTTP connection is held open.
"""

import json
from unittest.mock import MagicMock

import anyio
import pytest

from streamvault.api.routers import jobs
from streamvault.api.routers.jobs import event_stream, sse_limiter
from streamvault.services.broadcaster import EventKind, ProgressEvent, Subscription


class FakeRequest:
    """Reports connected for ``polls`` checks, then disconnected."""

    def __init__(self, polls: int) -> None:
        self.polls = polls

    async def is_disconnected(self) -> bool:
        self.polls -= 1
        return self.polls < 0


def collect(request, subscription, limiter=None) -> list[str]:
    async def main():
        used = limiter or anyio.CapacityLimiter(1)
        return [frame async for frame in event_stream(request, subscription, "owner-1", used, poll_seconds=0.01)]

    return anyio.run(main)


@pytest.fixture
def subscription():
    return MagicMock(spec=Subscription)


class TestEventStream:
    @pytest.mark.unit
    def test_events_then_keepalive_until_disconnect(self, subscription):
        event = ProgressEvent(job_id="job-1", owner_id="owner-1", kind=EventKind.PROGRESS, payload={"progress": 10})
        subscription.get.side_effect = [event, None]

        frames = collect(FakeRequest(polls=2), subscription)

        assert frames == [
            f"event: progress\ndata: {json.dumps(event.to_dict())}\n\n",
            ": keepalive\n\n",
        ]
        assert subscription.get.call_count == 2
        subscription.close.assert_called_once()

    @pytest.mark.unit
    def test_already_disconnected_closes_without_reading(self, subscription):
        assert collect(FakeRequest(polls=0), subscription) == []

        subscription.get.assert_not_called()
        subscription.close.assert_called_once()

    @pytest.mark.unit
    def test_reads_run_under_the_given_limiter(self, subscription):
        limiter = anyio.CapacityLimiter(1)
        borrowed = []

        def get(timeout):
            borrowed.append(limiter.borrowed_tokens)
            return None

        subscription.get.side_effect = get

        collect(FakeRequest(polls=3), subscription, limiter)

        assert borrowed == [1, 1, 1]
        assert limiter.borrowed_tokens == 0

    @pytest.mark.unit
    def test_subscription_closed_when_read_fails(self, subscription):
        subscription.get.side_effect = ConnectionError("redis down")

        with pytest.raises(ConnectionError):
            collect(FakeRequest(polls=5), subscription)

        subscription.close.assert_called_once()


class TestSseLimiter:
    @pytest.mark.unit
    def test_dedicated_limiter_is_shared_and_sized(self, monkeypatch):
        monkeypatch.setattr(jobs, "_sse_limiter", None)
        monkeypatch.setattr(jobs.settings, "sse_max_clients", 7)

        async def main():
            return sse_limiter(), sse_limiter(), anyio.to_thread.current_default_thread_limiter()

        first, second, default = anyio.run(main)

        assert first is second
        assert first is not default
        assert first.total_tokens == 7
