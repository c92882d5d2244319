import math
import re
import secrets
import string
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

from snip.models import ShortURLRecord

URL_SAFE_CHARS = string.ascii_uppercase + string.ascii_lowercase + string.digits + "_-"
DEFAULT_LENGTH = 10
SHORT_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def generate_code(length: int = DEFAULT_LENGTH) -> str:
    """Generate a random short code drawn uniformly from the URL-safe alphabet."""

    return "".join(secrets.choice(URL_SAFE_CHARS) for _ in range(length))


def is_valid_url(url: str) -> bool:
    """Check that a string is an absolute URL (scheme and host present)."""

    if not isinstance(url, str) or not url or any(ch.isspace() for ch in url):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


def is_valid_short_code(code: str) -> bool:
    return isinstance(code, str) and SHORT_CODE_PATTERN.match(code) is not None


def is_valid_ttl(ttl_seconds) -> bool:
    # bool is an int subclass but never a meaningful lifetime
    return (
        isinstance(ttl_seconds, int)
        and not isinstance(ttl_seconds, bool)
        and ttl_seconds > 0
    )


def remaining_seconds(expires_at: datetime, now: datetime) -> int:
    return max(0, math.floor((expires_at - now).total_seconds()))


def cache_ttl_for(
    record: ShortURLRecord, now: datetime, default: int
) -> Optional[int]:
    """Cache lifetime for a record.

    Records without an expiry get the default lifetime, otherwise the whole
    seconds left until expiry. Returns None when nothing is left, in which
    case the record must not be cached at all.
    """

    if record.expires_at is None:
        return default
    ttl = remaining_seconds(record.expires_at, now)
    return ttl if ttl > 0 else None
