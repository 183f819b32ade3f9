"""
Unit Tests - Snapshot Cache
"""
import pytest
from datetime import timedelta

from attribution_engine.cache import CacheManager, get_redis, snapshot_cache


class FakeRedis:
    """Minimal async Redis stand-in recording TTLs"""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl


@pytest.fixture
def redis_client() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(redis_client) -> CacheManager:
    return CacheManager("conversion", default_ttl=60, client=redis_client)


class TestCacheManager:
    """Tests for CacheManager"""

    async def test_set_and_get(self, cache, redis_client):
        """Test values are stored as JSON under the namespace"""
        assert await cache.set("site-1", {"totalVisitors": 3}) is True

        assert "conversion:site-1" in redis_client.data
        assert await cache.get("site-1") == {"totalVisitors": 3}
        assert await cache.get("site-2") is None

    async def test_ttl(self, cache, redis_client):
        """Test default and explicit TTLs"""
        await cache.set("a", 1)
        await cache.set("b", 2, ttl=10)
        await cache.set("c", 3, ttl=timedelta(minutes=2))

        assert redis_client.ttls == {"conversion:a": 60, "conversion:b": 10, "conversion:c": 120}

    async def test_non_json_types_are_stringified(self, cache):
        """Test values without a JSON encoding are stored as strings"""
        assert await cache.set("site-1", {1, 2}) is True
        assert await cache.get("site-1") == "{1, 2}"

    async def test_undecodable_entry(self, cache, redis_client):
        """Test corrupt entries read as a miss"""
        redis_client.data["conversion:site-1"] = "{not json"

        assert await cache.get("site-1") is None


class TestSnapshotCache:
    """Tests for the conversion snapshot cache"""

    def test_namespace_and_ttl(self, redis_client):
        """Test snapshot keys and the configured TTL"""
        cache = snapshot_cache(redis_client)

        assert cache.key("site-1") == "conversion:site-1"
        assert cache.default_ttl == 3600

    def test_uninitialized_client(self):
        """Test the global client must be initialized first"""
        with pytest.raises(RuntimeError):
            get_redis()
