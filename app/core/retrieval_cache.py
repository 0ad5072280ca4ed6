"""Thread-safe TTL cache for retrieval results.

Keys are derived from the normalized query only, so identical queries that
differ in case, spacing or punctuation share an entry. Values are pure
functions of the key, so concurrent writers racing on one key is harmless
(last writer wins).
"""

import hashlib
import re
import threading
from collections import OrderedDict
from collections.abc import Callable
from time import monotonic

from app.core.schemas_retrieval import CacheEntry

DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_ENTRIES = 1000

_PUNCT = re.compile(r"[^\w\s]", re.ASCII)


def normalize_for_cache(query: str) -> str:
    """Lowercase, trim, collapse whitespace, strip punctuation."""
    collapsed = " ".join(str(query).lower().split())
    return _PUNCT.sub("", collapsed)


def cache_key(query: str) -> str:
    normalized = normalize_for_cache(query)
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]
    return f"rag:{digest}:{normalized[:30]}"


class InMemoryRetrievalCache:
    """Process-local TTL store keyed by cache_key().

    Expired entries are swept on every write, and the least recently used
    entry is evicted once `max_entries` is reached.
    """

    def __init__(
        self,
        clock: Callable[[], float] = monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self._clock = clock
        self._max_entries = max_entries
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, tuple[CacheEntry, float]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> CacheEntry | None:
        now = self._clock()
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                self._misses += 1
                return None
            entry, expires_at = item
            if now >= expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.model_copy(deep=True)

    def set(self, key: str, entry: CacheEntry, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            self._entries[key] = (entry.model_copy(deep=True), now + ttl_seconds)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)
                self._evictions += 1

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
