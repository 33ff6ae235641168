import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from ideaforge.clock import Clock, utc_now
from ideaforge.models.schemas import AppType, GalleryPage

logger = logging.getLogger(__name__)


@dataclass
class _PageEntry:
    page: GalleryPage
    expires_at: datetime


class GalleryBrowseCache:
    """Cache-aside store for gallery listing pages.

    Pages expire after ``ttl`` but are also dropped wholesale whenever the
    set of published artifacts changes. A page whose load straddles an
    invalidation is returned to its caller but not cached.
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=5),
        max_entries: int = 1000,
        clock: Clock = utc_now,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self.clock = clock
        self._entries: dict[str, _PageEntry] = {}
        self._generation = 0

    @staticmethod
    def make_key(query: str | None, app_type: AppType | None, skip: int, limit: int) -> str:
        app_type_part = app_type.value if app_type else "any"
        return f"gallery:{query or 'all'}:{app_type_part}:{skip}:{limit}"

    async def get_or_load(
        self,
        query: str | None,
        app_type: AppType | None,
        skip: int,
        limit: int,
        loader: Callable[[], Awaitable[GalleryPage]],
    ) -> GalleryPage:
        key = self.make_key(query, app_type, skip, limit)
        now = self.clock()
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > now:
            logger.debug(f"Gallery cache hit: {key}")
            return entry.page.model_copy(deep=True)

        generation = self._generation
        page = await loader()
        if generation != self._generation:
            logger.debug(f"Gallery page {key} loaded across an invalidation, not cached")
            return page
        self._entries[key] = _PageEntry(page=page.model_copy(deep=True), expires_at=now + self.ttl)
        if len(self._entries) > self.max_entries:
            self.evict_expired()
        return page

    def evict_expired(self) -> int:
        now = self.clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def invalidate_all(self) -> None:
        self._generation += 1
        if self._entries:
            logger.info(f"Invalidating {len(self._entries)} gallery page(s)")
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
