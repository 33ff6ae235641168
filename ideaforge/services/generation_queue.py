import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, TypeVar

from ideaforge.clock import Clock, utc_now
from ideaforge.models.schemas import QueuedGenerationRequest
from ideaforge.services.retry_policy import Sleep

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _SessionQueue:
    created_at: datetime
    requests: deque[QueuedGenerationRequest] = field(default_factory=deque)


class OfflineGenerationQueue:
    """Per-session FIFO of generation requests that failed and await replay.

    Expiry is queue-level: once a session's queue is older than ``ttl`` the
    whole queue is discarded, regardless of when individual entries joined.
    State lives in process memory.
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(hours=24),
        replay_delay: float = 2.0,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ):
        self.ttl = ttl
        self.replay_delay = replay_delay
        self.clock = clock
        self.sleep = sleep
        self._queues: dict[str, _SessionQueue] = {}

    def _is_expired(self, queue: _SessionQueue) -> bool:
        return self.clock() - queue.created_at > self.ttl

    def _live_queue(self, session_id: str) -> _SessionQueue | None:
        queue = self._queues.get(session_id)
        if queue is None:
            return None
        if self._is_expired(queue):
            logger.warning(
                f"Offline queue for session {session_id} expired; "
                f"dropping {len(queue.requests)} request(s)"
            )
            del self._queues[session_id]
            return None
        return queue

    def enqueue(self, request: QueuedGenerationRequest) -> int:
        """Append a request and return the session's queue depth."""
        queue = self._live_queue(request.session_id)
        if queue is None:
            queue = _SessionQueue(created_at=self.clock())
            self._queues[request.session_id] = queue
        queue.requests.append(request)
        logger.info(
            f"Queued generation request for session {request.session_id} "
            f"(depth {len(queue.requests)})"
        )
        return len(queue.requests)

    def pending_count(self, session_id: str) -> int:
        queue = self._live_queue(session_id)
        return len(queue.requests) if queue else 0

    def has_pending(self, session_id: str) -> bool:
        return self.pending_count(session_id) > 0

    def pending(self, session_id: str) -> list[QueuedGenerationRequest]:
        queue = self._live_queue(session_id)
        return list(queue.requests) if queue else []

    def clear(self, session_id: str) -> None:
        self._queues.pop(session_id, None)

    def purge_expired(self) -> int:
        expired = [sid for sid, q in self._queues.items() if self._is_expired(q)]
        for session_id in expired:
            del self._queues[session_id]
        if expired:
            logger.info(f"Purged {len(expired)} expired offline queue(s)")
        return len(expired)

    async def replay(
        self,
        session_id: str,
        handler: Callable[[QueuedGenerationRequest], Awaitable[T]],
    ) -> list[T]:
        """Replay queued requests in order until one fails.

        A failed request goes back to the front of the queue with its retry
        count bumped, and replay stops so a still-degraded provider is not
        hammered. ``replay_delay`` seconds separate consecutive calls.

        Returns:
            Results of the requests that succeeded, in queue order
        """
        queue = self._live_queue(session_id)
        if queue is None:
            return []

        results: list[T] = []
        first = True
        while queue.requests:
            if not first:
                await self.sleep(self.replay_delay)
            first = False

            request = queue.requests.popleft()
            try:
                results.append(await handler(request))
            except asyncio.CancelledError:
                queue.requests.appendleft(request)
                raise
            except Exception as e:
                queue.requests.appendleft(
                    request.model_copy(update={"retry_count": request.retry_count + 1})
                )
                logger.warning(
                    f"Replay for session {session_id} stopped after {len(results)} "
                    f"success(es): {e}"
                )
                break

        if not queue.requests:
            self._queues.pop(session_id, None)
            logger.info(f"Offline queue for session {session_id} drained")

        return results
