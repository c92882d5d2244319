from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from snip.cache import MemoryBackend, RecordCache
from snip.models import ShortURLRecord
from snip.repository import DuplicateCode
from snip.services import ResolutionService

START_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def timestamp(self) -> float:
        return self.now.timestamp()


class InMemoryRepository:
    """Durable store double enforcing short code uniqueness on insert."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.rows: Dict[str, ShortURLRecord] = {}
        self.find_calls: List[str] = []

    async def findByCode(self, short_code: str) -> Optional[ShortURLRecord]:
        self.find_calls.append(short_code)
        return self.rows.get(short_code)

    async def insert(self, short_code, original_url, expires_at) -> ShortURLRecord:
        if short_code in self.rows:
            raise DuplicateCode(short_code)
        now = self.clock()
        record = ShortURLRecord(
            short_code=short_code,
            original_url=original_url,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )
        self.rows[short_code] = record
        return record

    async def update(self, short_code, original_url) -> Optional[ShortURLRecord]:
        current = self.rows.get(short_code)
        if current is None:
            return None
        record = current.model_copy(
            update={"original_url": original_url, "updated_at": self.clock()}
        )
        self.rows[short_code] = record
        return record

    async def delete(self, short_code) -> bool:
        return self.rows.pop(short_code, None) is not None

    async def listAllCodes(self) -> List[str]:
        return list(self.rows)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository(clock):
    return InMemoryRepository(clock)


@pytest.fixture
def backend(clock):
    return MemoryBackend(timer=clock.timestamp)


@pytest.fixture
def cache(backend):
    return RecordCache(backend)


@pytest.fixture
async def service(repository, cache, clock):
    service = ResolutionService(repository=repository, cache=cache, clock=clock)
    await service.start()
    return service
