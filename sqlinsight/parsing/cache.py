"""Bounded, time-limited cache of parse results.

Keys are a hash of (cleaned content, schema fingerprint). Entries are
immutable ``ParseResult`` objects, so concurrent tools writing the same key
simply store equivalent values. Oldest entries are evicted first once the
cache is full; expired entries are dropped on read.
"""

from __future__ import annotations

import copy
import dataclasses
import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass

from sqlinsight.parsing.schema import DimensionSchema
from sqlinsight.parsing.types import ParseResult

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    size: int = 0
    max_size: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return round(self.hits / total, 4) if total else 0.0


class ParseCache:
    """FIFO-evicting TTL cache for ``ParseResult`` values."""

    def __init__(self, max_size: int = 256, ttl_seconds: float = 600.0):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._entries: OrderedDict[str, tuple[float, ParseResult]] = OrderedDict()
        self._stats = CacheStats(max_size=max_size)

    @staticmethod
    def make_key(content: str, schema: DimensionSchema) -> str:
        digest = hashlib.sha256()
        digest.update(content.encode("utf-8"))
        digest.update(b"\x00")
        digest.update(schema.fingerprint.encode("ascii"))
        return digest.hexdigest()

    def get(self, key: str) -> ParseResult | None:
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None
        stored_at, result = entry
        if time.monotonic() - stored_at > self.ttl_seconds:
            del self._entries[key]
            self._stats.misses += 1
            return None
        self._stats.hits += 1
        # Hand out a private copy of the data so callers cannot alter the entry
        return dataclasses.replace(result, data=copy.deepcopy(result.data), from_cache=True)

    def set(self, key: str, result: ParseResult) -> None:
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("Parse cache evicted %s", evicted[:16])
        stored = dataclasses.replace(result, data=copy.deepcopy(result.data), from_cache=False)
        self._entries[key] = (time.monotonic(), stored)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        return dataclasses.replace(self._stats, size=len(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

