from datetime import datetime
from typing import List, Optional

from asyncpg import Pool, UniqueViolationError

from snip.models import ShortURLRecord

RECORD_COLUMNS = "short_code, original_url, created_at, updated_at, expires_at"


class DuplicateCode(Exception):
    def __init__(self, short_code: str):
        self.short_code = short_code
        self.message = f"Short code already taken: {short_code}"
        super().__init__(self.message)


async def createSchema(pool: Pool) -> None:
    await pool.execute(
        """
        CREATE TABLE IF NOT EXISTS url_mappings (
            short_code TEXT PRIMARY KEY,
            original_url TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            expires_at TIMESTAMPTZ
        )
        """
    )


def toRecord(row) -> ShortURLRecord:
    return ShortURLRecord(
        short_code=row["short_code"],
        original_url=row["original_url"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        expires_at=row["expires_at"],
    )


class URLRepository:
    """Durable store of short URL records, keyed by short code."""

    def __init__(self, pool: Pool):
        self.pool = pool

    async def findByCode(self, short_code: str) -> Optional[ShortURLRecord]:
        result = await self.pool.fetchrow(
            f"""
            SELECT {RECORD_COLUMNS} FROM url_mappings WHERE short_code = $1
            """,
            short_code,
        )
        if result:
            return toRecord(result)
        return None

    async def insert(
        self, short_code: str, original_url: str, expires_at: Optional[datetime]
    ) -> ShortURLRecord:
        try:
            result = await self.pool.fetchrow(
                f"""
                INSERT INTO url_mappings (short_code, original_url, expires_at)
                VALUES ($1, $2, $3)
                RETURNING {RECORD_COLUMNS}
                """,
                short_code,
                original_url,
                expires_at,
            )
        except UniqueViolationError as exc:
            raise DuplicateCode(short_code) from exc
        return toRecord(result)

    async def update(
        self, short_code: str, original_url: str
    ) -> Optional[ShortURLRecord]:
        result = await self.pool.fetchrow(
            f"""
            UPDATE url_mappings
            SET original_url = $2,
                updated_at = CURRENT_TIMESTAMP
            WHERE short_code = $1
            RETURNING {RECORD_COLUMNS}
            """,
            short_code,
            original_url,
        )
        if result:
            return toRecord(result)
        return None

    async def delete(self, short_code: str) -> bool:
        status = await self.pool.execute(
            """
            DELETE FROM url_mappings WHERE short_code = $1
            """,
            short_code,
        )
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return status.split()[-1] != "0"

    async def listAllCodes(self) -> List[str]:
        rows = await self.pool.fetch("SELECT short_code FROM url_mappings")
        return [row["short_code"] for row in rows]
