import base64
import json
import math
import os
from typing import Iterable, Optional, Union

import xxhash

BLOOM_FILTER_CAPACITY = int(os.getenv("BLOOM_FILTER_CAPACITY", 10000))
BLOOM_FILTER_ERROR_RATE = float(os.getenv("BLOOM_FILTER_ERROR_RATE", 0.01))


class SnapshotDecodeError(Exception):
    def __init__(self, details: str):
        self.details = details
        self.message = f"Cannot decode membership filter snapshot: {details}"
        super().__init__(self.message)


def calculate_hash_rounds(size: int, expected_items: int, error_rate: float) -> int:
    """Number of hash rounds k = ceil(-(m/n) * ln(p))."""

    return math.ceil(-(size / expected_items) * math.log(error_rate))


class MembershipFilter:
    """Bloom filter over short codes.

    Answers "could this code exist": a negative answer is exact, a positive
    one may be a false positive. Codes are only ever added, so the filter
    shrinks only by being rebuilt from the durable store.
    """

    def __init__(self, size: int, hashes: int, bits: Optional[bytearray] = None):
        if size <= 0 or hashes <= 0:
            raise ValueError(f"size and hashes must be positive, got {size}/{hashes}")
        self.size = size
        self.hashes = hashes
        nbytes = (size + 7) // 8
        if bits is None:
            bits = bytearray(nbytes)
        elif len(bits) != nbytes:
            raise ValueError(f"bit array holds {len(bits)} bytes, expected {nbytes}")
        self._bits = bits

    @classmethod
    def withCapacity(
        cls,
        capacity: int = BLOOM_FILTER_CAPACITY,
        error_rate: float = BLOOM_FILTER_ERROR_RATE,
    ) -> "MembershipFilter":
        expected_items = capacity / 2
        return cls(capacity, calculate_hash_rounds(capacity, expected_items, error_rate))

    @classmethod
    def fromCodes(cls, codes: Iterable[str], **sizing) -> "MembershipFilter":
        bloom = cls.withCapacity(**sizing)
        for code in codes:
            bloom.add(code)
        return bloom

    def _positions(self, code: str):
        data = code.encode("utf-8")
        h1 = xxhash.xxh64_intdigest(data, seed=0)
        h2 = xxhash.xxh64_intdigest(data, seed=1)
        for i in range(self.hashes):
            yield (h1 + i * h2) % self.size

    def add(self, code: str) -> bool:
        """Register a code. Returns True when at least one bit was newly set."""

        changed = False
        for pos in self._positions(code):
            byte, mask = pos >> 3, 1 << (pos & 7)
            if not self._bits[byte] & mask:
                self._bits[byte] |= mask
                changed = True
        return changed

    def mayContain(self, code: str) -> bool:
        return all(
            self._bits[pos >> 3] & (1 << (pos & 7)) for pos in self._positions(code)
        )

    def __contains__(self, code: str) -> bool:
        return self.mayContain(code)

    def dumps(self) -> str:
        return json.dumps(
            {
                "size": self.size,
                "hashes": self.hashes,
                "bits": base64.b64encode(bytes(self._bits)).decode("ascii"),
            }
        )

    @classmethod
    def loads(cls, snapshot: Union[str, bytes]) -> "MembershipFilter":
        try:
            data = json.loads(snapshot)
            bits = bytearray(base64.b64decode(data["bits"], validate=True))
            return cls(int(data["size"]), int(data["hashes"]), bits)
        except (ValueError, KeyError, TypeError) as exc:
            raise SnapshotDecodeError(str(exc)) from exc
