from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from ideaforge.services.response_cache import ResponseCache


@pytest.fixture
def cache(clock) -> ResponseCache:
    return ResponseCache(ttl=timedelta(minutes=15), clock=clock)


class TestResponseCache:
    def test_key_is_stable_and_category_scoped(self):
        key = ResponseCache.make_key("ideas", "prompt")

        assert key == ResponseCache.make_key("ideas", "prompt")
        assert key.startswith("ai:ideas:")
        assert key != ResponseCache.make_key("mutation", "prompt")

    @pytest.mark.asyncio
    async def test_hit_does_not_invoke_factory(self, cache):
        # Arrange
        factory = AsyncMock(return_value="[1, 2, 3]")
        await cache.get_or_create("ideas", "p", factory)

        # Act
        result = await cache.get_or_create("ideas", "p", factory)

        # Assert
        assert result == "[1, 2, 3]"
        factory.assert_awaited_once()
        assert cache.hits == 1
        assert cache.misses == 1

    @pytest.mark.asyncio
    async def test_empty_response_is_not_cached(self, cache):
        factory = AsyncMock(return_value="   ")

        await cache.get_or_create("ideas", "p", factory)
        await cache.get_or_create("ideas", "p", factory)

        assert factory.await_count == 2
        assert len(cache) == 0

    def test_access_slides_the_expiry(self, cache, clock):
        # Arrange
        cache.set("ideas", "p", "value")

        # Act
        clock.advance(minutes=10)
        assert cache.get("ideas", "p") == "value"
        clock.advance(minutes=10)

        # Assert
        assert cache.get("ideas", "p") == "value"

    def test_idle_entry_expires(self, cache, clock):
        cache.set("ideas", "p", "value")

        clock.advance(minutes=16)

        assert cache.get("ideas", "p") is None

    def test_absolute_ceiling_applies_despite_access(self, cache, clock):
        # Arrange
        cache.set("ideas", "p", "value")

        # Act
        for _ in range(4):
            clock.advance(minutes=10)
            cache.get("ideas", "p")
        clock.advance(minutes=6)

        # Assert
        assert cache.get("ideas", "p") is None

    def test_invalidate_removes_entry(self, cache):
        cache.set("ideas", "p", "value")

        assert cache.invalidate("ideas", "p") is True
        assert cache.get("ideas", "p") is None
        assert cache.invalidate("ideas", "p") is False
