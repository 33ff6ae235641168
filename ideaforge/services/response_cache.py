import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from ideaforge.clock import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    value: str
    last_access: datetime
    absolute_expiry: datetime


class ResponseCache:
    """Content-addressed cache for generator responses.

    Entries slide forward on every hit and are dropped once either the sliding
    window or the absolute ceiling passes. One instance is shared by every
    session in the process; a multi-instance deployment needs a shared backend.
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=15),
        absolute_ttl: timedelta | None = None,
        clock: Clock = utc_now,
    ):
        self.ttl = ttl
        self.absolute_ttl = absolute_ttl or ttl * 3
        self.clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(category: str, prompt: str) -> str:
        digest = hashlib.sha256(f"{category}:{prompt}".encode("utf-8")).hexdigest()
        return f"ai:{category}:{digest}"

    def _live_entry(self, key: str, now: datetime) -> _CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if now >= entry.absolute_expiry or now - entry.last_access >= self.ttl:
            del self._entries[key]
            return None
        return entry

    def get(self, category: str, prompt: str) -> str | None:
        now = self.clock()
        entry = self._live_entry(self.make_key(category, prompt), now)
        if entry is None:
            return None
        entry.last_access = now
        return entry.value

    def set(self, category: str, prompt: str, value: str) -> None:
        if not value or not value.strip():
            return
        now = self.clock()
        self._entries[self.make_key(category, prompt)] = _CacheEntry(
            value=value,
            last_access=now,
            absolute_expiry=now + self.absolute_ttl,
        )

    async def get_or_create(
        self,
        category: str,
        prompt: str,
        factory: Callable[[], Awaitable[str]],
    ) -> str:
        """Return the cached response or call ``factory`` and cache its result.

        Empty responses are returned but never cached.
        """
        cached = self.get(category, prompt)
        if cached is not None:
            self.hits += 1
            logger.debug(f"Cache hit for {category} ({len(cached)} chars)")
            return cached

        self.misses += 1
        logger.debug(f"Cache miss for {category}, invoking generator")
        value = await factory()
        self.set(category, prompt, value)
        return value

    def invalidate(self, category: str, prompt: str) -> bool:
        return self._entries.pop(self.make_key(category, prompt), None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
