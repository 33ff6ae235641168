import asyncio
from datetime import timedelta

import pytest

from ideaforge.errors import RateLimitedError
from ideaforge.models.schemas import AppType, QueuedGenerationRequest
from ideaforge.services.generation_queue import OfflineGenerationQueue


def make_request(session_id: str = "s1", style_index: int = 0) -> QueuedGenerationRequest:
    return QueuedGenerationRequest(
        session_id=session_id,
        app_title="Habit Garden",
        app_description="Grow routines",
        app_type=AppType.MOBILE,
        style_index=style_index,
    )


@pytest.fixture
def queue(clock, sleep) -> OfflineGenerationQueue:
    return OfflineGenerationQueue(ttl=timedelta(hours=24), replay_delay=2.0, clock=clock, sleep=sleep)


class TestOfflineGenerationQueue:
    def test_enqueue_reports_depth(self, queue):
        assert queue.enqueue(make_request()) == 1
        assert queue.enqueue(make_request(style_index=1)) == 2
        assert queue.pending_count("s1") == 2
        assert queue.pending_count("other") == 0

    @pytest.mark.asyncio
    async def test_expired_queue_is_dropped_not_replayed(self, queue, clock):
        # Arrange
        queue.enqueue(make_request())
        clock.advance(hours=25)
        handled = []

        async def handler(request):
            handled.append(request)
            return request.style_index

        # Act
        results = await queue.replay("s1", handler)

        # Assert
        assert results == []
        assert handled == []
        assert not queue.has_pending("s1")

    @pytest.mark.asyncio
    async def test_replay_drains_in_order_with_delay(self, queue, sleep):
        # Arrange
        for i in range(3):
            queue.enqueue(make_request(style_index=i))

        async def handler(request):
            return request.style_index

        # Act
        results = await queue.replay("s1", handler)

        # Assert
        assert results == [0, 1, 2]
        assert sleep.calls == [2.0, 2.0]
        assert queue.pending_count("s1") == 0

    @pytest.mark.asyncio
    async def test_failure_requeues_at_front_and_stops(self, queue):
        # Arrange
        for i in range(3):
            queue.enqueue(make_request(style_index=i))
        calls = []

        async def handler(request):
            calls.append(request.style_index)
            if request.style_index == 1:
                raise RateLimitedError("still throttled")
            return request.style_index

        # Act
        results = await queue.replay("s1", handler)

        # Assert
        assert results == [0]
        assert calls == [0, 1]
        pending = queue.pending("s1")
        assert [r.style_index for r in pending] == [1, 2]
        assert pending[0].retry_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_keeps_request_queued(self, queue):
        queue.enqueue(make_request())

        async def handler(request):
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await queue.replay("s1", handler)

        assert queue.pending_count("s1") == 1

    def test_purge_expired(self, queue, clock):
        queue.enqueue(make_request("old"))
        clock.advance(hours=25)
        queue.enqueue(make_request("fresh"))

        assert queue.purge_expired() == 1
        assert queue.pending_count("fresh") == 1
