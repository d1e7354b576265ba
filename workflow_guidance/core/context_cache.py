"""
Process-local cache of the last known identifiers of each execution.

The cache is an aid for recovering identifiers a caller lost, never a source
of truth: every failure inside it is logged and swallowed.
"""

import functools
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional, TypeVar

from .enums import ContextSource

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _fail_open(default: Any) -> Callable[[F], F]:
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception:
                logger.warning("Context cache operation %s failed", func.__name__, exc_info=True)
                return default() if callable(default) else default
        return wrapper  # type: ignore[return-value]
    return decorator


@dataclass
class CachedContext:
    """Identifiers remembered for one execution"""
    execution_id: str
    task_id: Optional[int] = None
    current_role_id: Optional[str] = None
    current_step_id: Optional[str] = None
    role_name: Optional[str] = None
    step_name: Optional[str] = None
    task_name: Optional[str] = None
    project_path: Optional[str] = None
    source: ContextSource = ContextSource.MANUAL


@dataclass
class CacheEntry:
    context: CachedContext
    created_at: float
    last_accessed: float
    access_count: int = 0


@dataclass
class CacheStats:
    total_entries: int = 0
    hit_rate: float = 0.0
    total_access: int = 0
    total_hits: int = 0
    total_misses: int = 0
    oldest_entry: Optional[float] = None
    newest_entry: Optional[float] = None


class ContextCache:
    """Bounded LRU map with a time-to-live refreshed on access"""

    def __init__(self, capacity: int = 100, ttl_seconds: float = 30 * 60,
                 clock: Callable[[], float] = time.time):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def generate_key(execution_id: str, source: ContextSource = ContextSource.MANUAL) -> str:
        return f"workflow:{execution_id}:{source.value}"

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.last_accessed > self.ttl_seconds

    def _touch(self, key: str, entry: CacheEntry, now: float) -> CachedContext:
        entry.last_accessed = now
        entry.access_count += 1
        self._entries.move_to_end(key)
        return replace(entry.context)

    @_fail_open(None)
    def store(self, key: str, context: CachedContext) -> None:
        """Insert or replace an entry, evicting the least recently accessed one when full"""
        with self._lock:
            now = self.clock()
            existing = self._entries.get(key)
            if existing is None and len(self._entries) >= self.capacity:
                victim = min(self._entries, key=lambda k: self._entries[k].last_accessed)
                del self._entries[victim]
                logger.debug("Evicted context cache entry %s", victim)
            self._entries[key] = CacheEntry(
                context=replace(context),
                created_at=existing.created_at if existing else now,
                last_accessed=now,
                access_count=existing.access_count if existing else 0,
            )
            self._entries.move_to_end(key)

    @_fail_open(None)
    def get(self, key: str) -> Optional[CachedContext]:
        with self._lock:
            now = self.clock()
            entry = self._entries.get(key)
            if entry is not None and self._expired(entry, now):
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return self._touch(key, entry, now)

    @_fail_open(False)
    def update(self, key: str, **fields: Any) -> bool:
        """Change fields of a cached context; False when the key is absent"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.context = replace(entry.context, **fields)
            self._touch(key, entry, self.clock())
            return True

    @_fail_open(False)
    def remove(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def _live(self) -> List[CacheEntry]:
        now = self.clock()
        return [e for e in self._entries.values() if not self._expired(e, now)]

    def _newest_match(self, predicate: Callable[[CachedContext], bool]) -> Optional[CachedContext]:
        matches = [e for e in self._live() if predicate(e.context)]
        if not matches:
            return None
        return replace(max(matches, key=lambda e: e.last_accessed).context)

    @_fail_open(None)
    def find_by_execution_id(self, execution_id: str) -> Optional[CachedContext]:
        with self._lock:
            return self._newest_match(lambda c: c.execution_id == execution_id)

    @_fail_open(None)
    def find_by_task_id(self, task_id: int) -> Optional[CachedContext]:
        with self._lock:
            return self._newest_match(lambda c: c.task_id == task_id)

    @_fail_open(None)
    def most_recent(self) -> Optional[CachedContext]:
        with self._lock:
            return self._newest_match(lambda c: True)

    @_fail_open(list)
    def entries(self) -> List[CachedContext]:
        """Live contexts, most recently accessed first"""
        with self._lock:
            live = sorted(self._live(), key=lambda e: e.last_accessed, reverse=True)
            return [replace(e.context) for e in live]

    @_fail_open(list)
    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    @_fail_open(0)
    def cleanup_expired(self) -> int:
        """Drop entries idle for longer than the TTL; returns how many were dropped"""
        with self._lock:
            now = self.clock()
            expired = [k for k, e in self._entries.items() if self._expired(e, now)]
            for key in expired:
                del self._entries[key]
            if expired:
                logger.debug("Removed %d expired context cache entries", len(expired))
            return len(expired)

    @_fail_open(None)
    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    @_fail_open(CacheStats)
    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            created = [e.created_at for e in self._entries.values()]
            return CacheStats(
                total_entries=len(self._entries),
                hit_rate=round(self._hits / total, 2) if total else 0.0,
                total_access=sum(e.access_count for e in self._entries.values()),
                total_hits=self._hits,
                total_misses=self._misses,
                oldest_entry=min(created) if created else None,
                newest_entry=max(created) if created else None,
            )
