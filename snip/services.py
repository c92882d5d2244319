import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from snip.bloom import BLOOM_FILTER_CAPACITY, BLOOM_FILTER_ERROR_RATE, MembershipFilter
from snip.cache import RecordCache
from snip.helpers import (
    cache_ttl_for,
    generate_code,
    is_valid_short_code,
    is_valid_ttl,
    is_valid_url,
)
from snip.models import ShortURLRecord
from snip.repository import DuplicateCode, URLRepository

logger = logging.getLogger(__name__)

MAX_GENERATION_ATTEMPTS = int(os.getenv("MAX_GENERATION_ATTEMPTS", 3))


class ShortenerError(Exception):
    kind = "INTERNAL"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class BadInput(ShortenerError):
    kind = "BAD_INPUT"


class RecordNotFound(ShortenerError):
    kind = "NOT_FOUND"

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__(f"URL with short code '{short_code}' not found")


class RecordExpired(ShortenerError):
    kind = "EXPIRED"

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__(f"URL with short code '{short_code}' has expired")


class AlreadyExists(ShortenerError):
    kind = "ALREADY_EXISTS"

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__(f"Short code '{short_code}' is already in use")


class GenerationExhausted(ShortenerError):
    kind = "GENERATION_EXHAUSTED"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Could not generate a unique short code after {attempts} attempts"
        )


class InternalError(ShortenerError):
    kind = "INTERNAL"

    def __init__(self, operation: str, details: str):
        self.operation = operation
        self.details = details
        super().__init__(f"Operation '{operation}' failed: {details}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResolutionService:
    """Create, resolve, update and delete short codes.

    Reads go membership filter -> cache -> durable store; writes go durable
    store -> cache -> membership filter. The store is authoritative, the cache
    is a best-effort mirror and the filter only ever grows between rebuilds.
    """

    def __init__(
        self,
        repository: URLRepository,
        cache: RecordCache,
        clock: Callable[[], datetime] = utcnow,
        code_factory: Callable[[], str] = generate_code,
        max_attempts: int = MAX_GENERATION_ATTEMPTS,
        filter_capacity: int = BLOOM_FILTER_CAPACITY,
        filter_error_rate: float = BLOOM_FILTER_ERROR_RATE,
    ):
        self.repository = repository
        self.cache = cache
        self.clock = clock
        self.code_factory = code_factory
        self.max_attempts = max_attempts
        self.filter_capacity = filter_capacity
        self.filter_error_rate = filter_error_rate
        self.bloom = MembershipFilter.withCapacity(filter_capacity, filter_error_rate)
        # one set per in-flight rebuild, collecting codes registered mid-scan
        self._rebuild_pending: List[set] = []

    async def start(self) -> None:
        bloom = await self.cache.loadFilter()
        if bloom is not None:
            self.bloom = bloom
            logger.info("Membership filter loaded from cache snapshot")
            return
        count = await self.rebuildFilter()
        logger.info(f"Membership filter built from durable store ({count} codes)")

    async def rebuildFilter(self) -> int:
        pending = set()
        self._rebuild_pending.append(pending)
        try:
            codes = await self.repository.listAllCodes()
        except Exception as exc:
            logger.error(f"Error scanning durable store for filter rebuild: {exc}")
            raise InternalError("rebuildFilter", str(exc)) from exc
        else:
            bloom = MembershipFilter.fromCodes(
                codes,
                capacity=self.filter_capacity,
                error_rate=self.filter_error_rate,
            )
            for code in pending:
                bloom.add(code)
            self.bloom = bloom
        finally:
            self._rebuild_pending.remove(pending)

        if await self.cache.saveFilter(self.bloom):
            logger.info(f"Membership filter rebuilt with {len(codes)} codes")
        else:
            logger.warning(
                f"Membership filter rebuilt with {len(codes)} codes but the snapshot "
                "was not persisted; next restart rescans the store"
            )
        return len(codes)

    async def lookup(self, short_code: str) -> ShortURLRecord:
        if not self.bloom.mayContain(short_code):
            logger.info(f"Filter rejected lookup for never-issued code: {short_code}")
            raise RecordNotFound(short_code)
        return await self._resolve(short_code)

    async def create(
        self,
        original_url: str,
        short_code: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> ShortURLRecord:
        if not is_valid_url(original_url):
            raise BadInput("Invalid URL format.")
        if short_code and not is_valid_short_code(short_code):
            raise BadInput(
                "Invalid short code format. Only alphanumeric characters, "
                "underscores, and hyphens are allowed."
            )
        if ttl_seconds is not None and not is_valid_ttl(ttl_seconds):
            raise BadInput("TTL must be a positive integer.")

        if short_code:
            # expired records still occupy their code until deleted
            if await self._find(short_code, "create") is not None:
                raise AlreadyExists(short_code)
        else:
            short_code = await self._generateCode()

        expires_at = None
        if ttl_seconds is not None:
            expires_at = self.clock() + timedelta(seconds=ttl_seconds)

        try:
            record = await self.repository.insert(short_code, original_url, expires_at)
        except DuplicateCode as exc:
            logger.warning(f"Lost insert race for short code: {short_code}")
            raise AlreadyExists(short_code) from exc
        except Exception as exc:
            logger.error(f"Error inserting short code {short_code}: {exc}")
            raise InternalError("create", str(exc)) from exc

        await self.cache.set(short_code, record, ttl_seconds or self.cache.default_ttl)
        await self._register(short_code)
        logger.info(f"URL shortened and cached: {original_url} -> {short_code}")

        return record

    async def update(self, short_code: str, new_url: str) -> ShortURLRecord:
        if not is_valid_url(new_url):
            raise BadInput("Invalid URL format.")

        await self._findLive(short_code, "update")

        try:
            record = await self.repository.update(short_code, new_url)
        except Exception as exc:
            logger.error(f"Error updating short code {short_code}: {exc}")
            raise InternalError("update", str(exc)) from exc
        if record is None:
            # deleted between the check and the write
            raise RecordNotFound(short_code)

        ttl = cache_ttl_for(record, self.clock(), self.cache.default_ttl)
        if ttl is None:
            await self.cache.delete(short_code)
        else:
            await self.cache.set(short_code, record, ttl)
        logger.info(f"URL updated: {short_code} -> {new_url}")

        return record

    async def delete(self, short_code: str) -> bool:
        await self._findLive(short_code, "delete")

        try:
            removed = await self.repository.delete(short_code)
            await self.cache.delete(short_code)
        except Exception as exc:
            logger.error(f"Error deleting short code {short_code}: {exc}")
            return False

        logger.info(f"URL deleted: {short_code}")
        return removed

    async def _resolve(self, short_code: str) -> ShortURLRecord:
        now = self.clock()

        cached = await self.cache.get(short_code)
        if cached is not None:
            if cached.isExpired(now):
                logger.info(f"Evicting expired cache entry: {short_code}")
                await self.cache.delete(short_code)
                raise RecordNotFound(short_code)
            logger.info(f"Cache hit: {short_code} -> {cached.original_url}")
            return cached

        record = await self._findLive(short_code, "lookup")

        ttl = cache_ttl_for(record, now, self.cache.default_ttl)
        if ttl is not None:
            await self.cache.set(short_code, record, ttl)
        logger.info(f"URL found and cached: {short_code} -> {record.original_url}")

        return record

    async def _find(self, short_code: str, operation: str) -> Optional[ShortURLRecord]:
        try:
            return await self.repository.findByCode(short_code)
        except Exception as exc:
            logger.error(f"Error reading short code {short_code}: {exc}")
            raise InternalError(operation, str(exc)) from exc

    async def _findLive(self, short_code: str, operation: str) -> ShortURLRecord:
        record = await self._find(short_code, operation)
        if record is None:
            raise RecordNotFound(short_code)
        if record.isExpired(self.clock()):
            raise RecordExpired(short_code)
        return record

    async def _generateCode(self) -> str:
        for attempt in range(1, self.max_attempts + 1):
            code = self.code_factory()
            if await self._find(code, "create") is None:
                return code
            logger.warning(
                f"Generated short code collided ({attempt}/{self.max_attempts}): {code}"
            )
        logger.error(f"Short code generation exhausted after {self.max_attempts} attempts")
        raise GenerationExhausted(self.max_attempts)

    async def _register(self, short_code: str) -> None:
        self.bloom.add(short_code)
        for pending in self._rebuild_pending:
            pending.add(short_code)
        await self.cache.saveFilter(self.bloom)
