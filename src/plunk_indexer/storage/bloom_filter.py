"""Bloom filter used to skip redundant object store writes."""

import hashlib
import math
from typing import Iterator

DEFAULT_SIZE_BITS = 1024 * 1024
DEFAULT_HASH_COUNT = 32


class BloomFilter:
    """
    Space-efficient probabilistic set of object ids.

    False positives possible, false negatives impossible. Capacity is fixed at
    construction; the false positive rate grows with the number of added keys.
    """

    def __init__(
        self, size_bits: int = DEFAULT_SIZE_BITS, hash_count: int = DEFAULT_HASH_COUNT
    ):
        if size_bits <= 0 or hash_count <= 0:
            raise ValueError("size_bits and hash_count must be positive")
        self.size_bits = size_bits
        self.hash_count = hash_count
        self.bits = bytearray((size_bits + 7) // 8)
        self.count = 0

    def _positions(self, key: str) -> Iterator[int]:
        """Generate bit positions using double hashing."""
        key_bytes = key.encode("utf-8")
        h1 = int(hashlib.md5(key_bytes).hexdigest(), 16)
        h2 = int(hashlib.sha1(key_bytes).hexdigest(), 16)
        for i in range(self.hash_count):
            yield (h1 + i * h2) % self.size_bits

    def add(self, key: str) -> None:
        """Add a key to the filter."""
        for pos in self._positions(key):
            self.bits[pos // 8] |= 1 << (pos % 8)
        self.count += 1

    def might_contain(self, key: str) -> bool:
        """Check if key might be in the filter (false positives possible)."""
        for pos in self._positions(key):
            if not self.bits[pos // 8] & (1 << (pos % 8)):
                return False
        return True

    def __contains__(self, key: str) -> bool:
        return self.might_contain(key)

    def estimated_false_positive_rate(self) -> float:
        """Estimate current false positive rate: (1 - e^(-kn/m))^k."""
        if self.count == 0:
            return 0.0
        k = self.hash_count
        return (1 - math.exp(-k * self.count / self.size_bits)) ** k
