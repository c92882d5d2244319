from datetime import datetime
from typing import Optional

from pydantic import BaseModel, StrictInt, StrictStr


class ShortURLRecord(BaseModel):
    short_code: str
    original_url: str
    created_at: datetime
    updated_at: datetime
    expires_at: Optional[datetime] = None

    def isExpired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


# strict: JSON true, "5" and 2.5 are rejected rather than coerced
class CreateRequest(BaseModel):
    url: StrictStr
    short_code: Optional[StrictStr] = None
    ttl_seconds: Optional[StrictInt] = None


class UpdateRequest(BaseModel):
    url: StrictStr
