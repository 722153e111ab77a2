"""
MinHash locality-sensitive hashing over character n-grams.

Each name is shingled into overlapping character n-grams, summarized by a
MinHash signature of ``n_bands * band_width`` values, and bucketed once per
band. Two names share a bucket with probability ``1 - (1 - s**r)**b`` for
Jaccard similarity ``s``, band width ``r`` and ``b`` bands, so near-duplicates
collide almost surely while unrelated names rarely do.

Buckets are also keyed by a caller-supplied block string: names in
different blocks never become candidates.
"""

import zlib
from collections import defaultdict
from typing import Iterable

import numpy as np

# Mersenne prime 2^31 - 1; keeps a * x + b inside int64
MERSENNE_PRIME = (1 << 31) - 1


def shingles(text: str, width: int = 3) -> frozenset:
    """Character n-grams of ``text``; a string shorter than ``width`` is its own shingle."""
    if not text:
        return frozenset()
    if len(text) < width:
        return frozenset({text})
    return frozenset(text[i:i + width] for i in range(len(text) - width + 1))


def jaccard(a: frozenset, b: frozenset) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class MinHashLSH:
    """
    Banded MinHash index.

    Usage:
        index = MinHashLSH(n_bands=100, band_width=4)
        index.add(0, "a", shingles("acme"))
        candidates = index.query("a", shingles("acmee"))
    """

    def __init__(self, n_bands: int = 100, band_width: int = 4, seed: int = 42):
        if n_bands < 1 or band_width < 1:
            raise ValueError("n_bands and band_width must be positive")

        self.n_bands = n_bands
        self.band_width = band_width

        # Fixed seed: identical inputs always produce identical buckets
        rng = np.random.default_rng(seed)
        num_perm = n_bands * band_width
        self._a = rng.integers(1, MERSENNE_PRIME, size=num_perm, dtype=np.int64)
        self._b = rng.integers(0, MERSENNE_PRIME, size=num_perm, dtype=np.int64)

        self._buckets: dict[tuple[str, int, bytes], list[int]] = defaultdict(list)

    def signature(self, shingle_set: Iterable[str]) -> np.ndarray:
        """MinHash signature; crc32 is used instead of hash() so it is stable across processes."""
        base = np.fromiter(
            (zlib.crc32(s.encode("utf-8")) for s in shingle_set),
            dtype=np.int64,
        )
        if base.size == 0:
            raise ValueError("Cannot compute a signature for an empty shingle set")
        base %= MERSENNE_PRIME
        permuted = (np.outer(base, self._a) + self._b) % MERSENNE_PRIME
        return permuted.min(axis=0)

    def _band_keys(self, block: str, shingle_set: frozenset) -> list[tuple[str, int, bytes]]:
        sig = self.signature(shingle_set)
        r = self.band_width
        return [
            (block, band, sig[band * r:(band + 1) * r].tobytes())
            for band in range(self.n_bands)
        ]

    def add(self, key: int, block: str, shingle_set: frozenset):
        """Index ``key`` under every band bucket of its signature. Empty sets are ignored."""
        if not shingle_set:
            return
        for band_key in self._band_keys(block, shingle_set):
            self._buckets[band_key].append(key)

    def query(self, block: str, shingle_set: frozenset) -> set[int]:
        """Keys sharing at least one band bucket with ``shingle_set`` in the same block."""
        if not shingle_set:
            return set()
        found: set[int] = set()
        for band_key in self._band_keys(block, shingle_set):
            bucket = self._buckets.get(band_key)
            if bucket:
                found.update(bucket)
        return found

    def __len__(self) -> int:
        return len(self._buckets)
