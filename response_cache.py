"""
In-memory response cache for ProWorkflow reads.

Entries expire by category (project lists, records, messages, settings...)
and carry dependency tags, so a write can drop exactly the entries that
depend on the record it changed instead of flushing everything.

A background job (APScheduler) calls ``sweep_expired`` on an interval to
keep memory proportional to the live working set. Reads never depend on
the sweep: an expired entry is never returned.

Concurrency: every operation takes the same lock, so the tag index is never
corrupted. A ``set`` racing an ``invalidate`` on the same tag may keep or
drop the new entry depending on which gets the lock first. That is
accepted; ProWorkflow is the source of truth and the entry ages out anyway.
"""

import json
import logging
import threading
import time
from typing import Callable, Dict, Iterable, Optional, Tuple

import config

logger = logging.getLogger(__name__)


class ResponseCache:
    """Key/value store with per-category TTLs and a tag → keys index."""

    def __init__(self, ttls: Optional[Dict[str, int]] = None,
                 default_ttl: int = config.DEFAULT_CACHE_TTL,
                 clock: Callable[[], float] = time.time):
        self._ttls = dict(config.CACHE_TTLS if ttls is None else ttls)
        self._default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries = {}
        self._tag_index = {}
        self._stats = {
            "hits": 0,
            "misses": 0,
            "expired_reads": 0,
            "sets": 0,
            "invalidated": 0,
            "swept": 0,
        }

    def ttl_for(self, category: str) -> int:
        """Seconds an entry of ``category`` stays fresh; unknown categories get the default."""
        return self._ttls.get(category, self._default_ttl)

    def _is_expired(self, entry: dict, now: float, category: Optional[str] = None) -> bool:
        return now - entry["created_at"] >= self.ttl_for(category or entry["category"])

    def _remove(self, key: str) -> bool:
        """Drop ``key`` from the store and from its tag buckets. Caller holds the lock."""
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        for tag in entry["tags"]:
            bucket = self._tag_index.get(tag)
            if bucket is None:
                continue
            bucket.discard(key)
            if not bucket:
                del self._tag_index[tag]
        return True

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: str, category: Optional[str] = None):
        """Return the cached value, or None when absent or expired.

        Expired entries stay in place until swept or overwritten.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            if self._is_expired(entry, self._clock(), category):
                self._stats["expired_reads"] += 1
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            logger.debug(f"Cache HIT for {key}")
            return entry["value"]

    def set(self, key: str, value, category: str, tags: Iterable[str] = ()):
        """Store ``value`` under ``key``, replacing any previous entry.

        The key is added to each tag's bucket. Registrations from an older
        entry for the same key are left alone.
        """
        tags = frozenset(tags)
        with self._lock:
            self._entries[key] = {
                "value": value,
                "category": category,
                "created_at": self._clock(),
                "tags": tags,
            }
            for tag in tags:
                self._tag_index.setdefault(tag, set()).add(key)
            self._stats["sets"] += 1
        logger.debug(f"Cache SET for {key} ({category}, tags={sorted(tags)})")

    def invalidate(self, tag: str) -> int:
        """Remove every entry registered under ``tag``. Returns how many were removed."""
        with self._lock:
            keys = self._tag_index.pop(tag, set())
            removed = 0
            for key in keys:
                if self._remove(key):
                    removed += 1
            self._stats["invalidated"] += removed
        if removed:
            logger.info(f"Cache invalidated tag '{tag}': {removed} entries removed")
        return removed

    def clear(self) -> int:
        """Remove everything. Returns how many entries were removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            self._tag_index.clear()
            self._stats["invalidated"] += removed
        logger.info(f"Cache cleared: {removed} entries removed")
        return removed

    def sweep_expired(self) -> int:
        """Delete entries older than their category TTL. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in expired:
                self._remove(key)
            self._stats["swept"] += len(expired)
        if expired:
            logger.info(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def tagged_keys(self, tag: str) -> set:
        with self._lock:
            return set(self._tag_index.get(tag, ()))

    def stats(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
            stats["size"] = len(self._entries)
            stats["tags"] = len(self._tag_index)
        return stats

    def debug_snapshot(self, limit: int = 50) -> dict:
        """Stats, the first ``limit`` entries and a tag → entry-count summary."""
        with self._lock:
            now = self._clock()
            entries = []
            for key, entry in list(self._entries.items())[:limit]:
                try:
                    size = len(json.dumps(entry["value"], default=str))
                except (TypeError, ValueError):
                    size = None
                entries.append({
                    "key": key if len(key) <= 50 else key[:50] + "...",
                    "category": entry["category"],
                    "age_seconds": round(now - entry["created_at"], 1),
                    "ttl_seconds": self.ttl_for(entry["category"]),
                    "expired": self._is_expired(entry, now),
                    "size_chars": size,
                    "tags": sorted(entry["tags"]),
                })
            index_summary = {tag: len(keys) for tag, keys in sorted(self._tag_index.items())}
        return {
            "stats": self.stats(),
            "ttls": dict(self._ttls, default=self._default_ttl),
            "entries": entries,
            "dependency_index": index_summary,
        }


def cached_request(cache: ResponseCache, request_fn: Callable, endpoint: str,
                   category: str, tags: Iterable[str] = ()) -> Tuple[dict, bool]:
    """GET ``endpoint`` through the cache.

    Returns ``(payload, from_cache)``. Upstream errors propagate and nothing
    is cached for a failed call.
    """
    cached = cache.get(endpoint, category)
    if cached is not None:
        return cached, True
    payload = request_fn(endpoint)
    cache.set(endpoint, payload, category, tags)
    return payload, False
