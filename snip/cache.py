import logging
import os
from typing import Optional

from cachetools import TLRUCache
from pydantic import ValidationError
from redis.exceptions import RedisError

from snip.bloom import MembershipFilter, SnapshotDecodeError
from snip.models import ShortURLRecord

logger = logging.getLogger(__name__)

CACHE_EXPIRY_SECONDS = int(os.getenv("CACHE_EXPIRY_SECONDS", 3600))
MEMORY_CACHE_MAX_SIZE = int(os.getenv("MEMORY_CACHE_MAX_SIZE", 10000))
FILTER_SNAPSHOT_KEY = "url_shortener_bloom_filter"
RECORD_KEY_PREFIX = "url:"


def record_key(code: str) -> str:
    return f"{RECORD_KEY_PREFIX}{code}"


class MemoryBackend:
    """In-process stand-in for Redis implementing the calls RecordCache makes.

    Every entry carries its own deadline; entries set without one never expire
    (until evicted by size).
    """

    def __init__(self, maxsize: int = MEMORY_CACHE_MAX_SIZE, timer=None):
        kwargs = {"timer": timer} if timer is not None else {}
        self._cache = TLRUCache(maxsize=maxsize, ttu=self._ttu, **kwargs)

    @staticmethod
    def _ttu(key, value, now):
        _, ttl = value
        return now + ttl if ttl is not None else float("inf")

    async def get(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        return entry[0] if entry is not None else None

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self._cache[key] = (value, ttl)
        return True

    async def set(self, key: str, value: str) -> bool:
        self._cache[key] = (value, None)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._cache.pop(key, None) is not None:
                removed += 1
        return removed


class RecordCache:
    """Time-expiring mirror of durable records.

    Backend failures are logged and reported as misses; callers always have
    the durable store to fall back on.
    """

    def __init__(self, backend, default_ttl: int = CACHE_EXPIRY_SECONDS):
        self.backend = backend
        self.default_ttl = default_ttl

    async def get(self, code: str) -> Optional[ShortURLRecord]:
        try:
            payload = await self.backend.get(record_key(code))
        except RedisError as exc:
            logger.warning(f"Cache read failed for {code}, treating as miss: {exc}")
            return None
        if payload is None:
            return None
        try:
            return ShortURLRecord.model_validate_json(payload)
        except ValidationError:
            logger.warning(f"Dropping undecodable cache entry for {code}")
            await self.delete(code)
            return None

    async def set(
        self, code: str, record: ShortURLRecord, ttl: Optional[int] = None
    ) -> bool:
        ttl = self.default_ttl if ttl is None else ttl
        try:
            await self.backend.setex(record_key(code), ttl, record.model_dump_json())
            return True
        except RedisError as exc:
            logger.warning(f"Cache write failed for {code}: {exc}")
            return False

    async def delete(self, code: str) -> bool:
        try:
            return bool(await self.backend.delete(record_key(code)))
        except RedisError as exc:
            logger.warning(f"Cache delete failed for {code}: {exc}")
            return False

    async def loadFilter(self) -> Optional[MembershipFilter]:
        try:
            snapshot = await self.backend.get(FILTER_SNAPSHOT_KEY)
        except RedisError as exc:
            logger.error(f"Error loading membership filter snapshot: {exc}")
            return None
        if snapshot is None:
            return None
        try:
            return MembershipFilter.loads(snapshot)
        except SnapshotDecodeError as exc:
            logger.error(str(exc))
            return None

    async def saveFilter(self, bloom: MembershipFilter) -> bool:
        try:
            await self.backend.set(FILTER_SNAPSHOT_KEY, bloom.dumps())
            return True
        except RedisError as exc:
            logger.error(f"Error saving membership filter snapshot: {exc}")
            return False
