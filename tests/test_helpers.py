from datetime import datetime, timedelta, timezone

import pytest

from snip.helpers import (
    DEFAULT_LENGTH,
    URL_SAFE_CHARS,
    cache_ttl_for,
    generate_code,
    is_valid_short_code,
    is_valid_ttl,
    is_valid_url,
    remaining_seconds,
)
from snip.models import ShortURLRecord

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
EXAMPLE_URL = "https://www.example.com"


def make_record(expires_at=None):
    return ShortURLRecord(
        short_code="abc",
        original_url=EXAMPLE_URL,
        created_at=NOW,
        updated_at=NOW,
        expires_at=expires_at,
    )


# Tests generate_code
def test_generate_code_properties():
    code = generate_code()
    assert len(code) == DEFAULT_LENGTH
    assert all(char in URL_SAFE_CHARS for char in code)
    assert is_valid_short_code(code)


def test_generate_code_custom_length():
    assert len(generate_code(4)) == 4


def test_generate_code_is_random():
    assert len({generate_code() for _ in range(50)}) == 50


def test_alphabet_is_url_safe():
    assert len(URL_SAFE_CHARS) == 64
    assert set("_-") <= set(URL_SAFE_CHARS)


# Tests validators
@pytest.mark.parametrize(
    "url, expected",
    [
        (EXAMPLE_URL, True),
        ("http://localhost:8000/path?q=1", True),
        ("ftp://files.example.com/a.txt", True),
        ("example.com", False),
        ("/relative/path", False),
        ("https://", False),
        ("https://exa mple.com", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_url(url, expected):
    assert is_valid_url(url) is expected


@pytest.mark.parametrize(
    "code, expected",
    [
        ("mine", True),
        ("A-b_9", True),
        ("", False),
        ("has space", False),
        ("emoji🙂", False),
        ("dot.dot", False),
    ],
)
def test_is_valid_short_code(code, expected):
    assert is_valid_short_code(code) is expected


@pytest.mark.parametrize(
    "ttl, expected",
    [(1, True), (3600, True), (0, False), (-5, False), (1.5, False), (True, False), ("10", False)],
)
def test_is_valid_ttl(ttl, expected):
    assert is_valid_ttl(ttl) is expected


# Tests TTL computation
def test_remaining_seconds_floors_at_zero():
    assert remaining_seconds(NOW + timedelta(seconds=90.7), NOW) == 90
    assert remaining_seconds(NOW - timedelta(seconds=5), NOW) == 0


def test_cache_ttl_without_expiry_uses_default():
    assert cache_ttl_for(make_record(), NOW, 3600) == 3600


def test_cache_ttl_with_expiry():
    record = make_record(NOW + timedelta(seconds=120))
    assert cache_ttl_for(record, NOW, 3600) == 120


def test_cache_ttl_for_lapsed_record():
    record = make_record(NOW + timedelta(milliseconds=500))
    assert cache_ttl_for(record, NOW, 3600) is None
