# services/cache_layer.py

"""
TTL + LRU cache fronting the derived statistics of the ledger and directory.

Entries are grouped into named kinds (e.g. "student-average", "subject-averages") and keyed by
student ID, so a single `invalidate(student_id)` drops everything derived from that student.
Each kind has its own lock; traffic on one kind never blocks another.

Entry lifecycle:
    ABSENT -> PRESENT (put) -> EXPIRED (ttl elapsed, still stored) -> ABSENT (sweep or invalidate)

A `get()` on an expired entry is a miss, but the entry is left in place; removing expired
entries is the sweep's job. The sweep runs synchronously from `put()` once the tracked entry
count reaches the high-water mark, and periodically on a daemon thread started with `start()`.
When the cache is still full after a sweep, `put()` evicts the single least-recently-used
entry across all kinds.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Generic, Hashable, Mapping, TypeVar

import core.formatters as formatters
from core.config import CacheConfig
from core.response import ErrorCode, Response

logger = logging.getLogger(__name__)

V = TypeVar("V")

# well-known kinds used by the ledger
STUDENT_AVERAGE = "student-average"
CORE_AVERAGE = "core-average"
ELECTIVE_AVERAGE = "elective-average"
SUBJECT_AVERAGES = "subject-averages"
CLASS_AVERAGE = "class-average"
CLASS_STATISTICS = "class-statistics"

AGGREGATE_KINDS: tuple[str, ...] = (CLASS_AVERAGE, CLASS_STATISTICS)


@dataclass
class CacheEntry(Generic[V]):
    value: V
    created_at: float
    last_access: float
    access_count: int = 1

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.created_at >= ttl


@dataclass
class _KindStore(Generic[V]):
    lock: threading.Lock = field(default_factory=threading.Lock)
    # insertion order doubles as LRU order: least recently used first
    entries: OrderedDict[Hashable, CacheEntry[V]] = field(default_factory=OrderedDict)


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    entries_by_kind: dict[str, int]

    @property
    def total_entries(self) -> int:
        return sum(self.entries_by_kind.values())

    @property
    def requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return (self.hits * 100.0 / self.requests) if self.requests else 0.0

    def summary(self) -> str:
        rows: list[tuple[str, object]] = [
            ("Hit Rate", formatters.format_percentage(self.hit_rate)),
            ("Hits", self.hits),
            ("Misses", self.misses),
            ("Evictions", self.evictions),
            ("Entries", self.total_entries),
        ]
        rows.extend((f"  {kind}", count) for kind, count in sorted(self.entries_by_kind.items()))

        return (
            f"{formatters.format_banner_text('CACHE STATISTICS')}\n"
            f"{formatters.format_key_value_lines(rows)}"
        )


class CacheLayer(Generic[V]):

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or CacheConfig()
        self._clock = clock

        self._kinds: dict[str, _KindStore[V]] = {}
        self._kinds_lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._stats_lock = threading.Lock()

        self._sweeper: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._running = threading.Event()
        self._running.set()

    # === properties ===

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def ttl(self) -> float:
        return self._config.ttl_seconds

    @property
    def is_sweeping(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    @property
    def is_paused(self) -> bool:
        return not self._running.is_set()

    # === data accessors ===

    def get(self, kind: str, key: Hashable) -> Response:
        """
        Looks up a live entry.

        Returns:
            Response: A structured response with the following contract:
                - success (bool):
                    - True on a hit.
                    - False if the entry is absent or expired.
                - error (ErrorCode | None):
                    - `ErrorCode.NOT_FOUND` on a miss.
                - data (dict): Payload with the following keys:
                    - On success:
                        - "value" (V): The cached value.

        Notes:
            - Expired entries are reported as misses but are not removed here.
            - A miss is never an error condition for callers; it means "compute and put".
        """
        store = self._kinds.get(kind)
        now = self._clock()
        entry = None

        if store is not None:
            with store.lock:
                entry = store.entries.get(key)

                if entry is not None and not entry.is_expired(now, self.ttl):
                    entry.access_count += 1
                    entry.last_access = now
                    store.entries.move_to_end(key)
                else:
                    entry = None

        if entry is None:
            self._count("misses")
            logger.debug("Cache MISS: %s[%s]", kind, key)

            return Response.fail(
                detail=f"No live cache entry for {kind}[{key}].",
                error=ErrorCode.NOT_FOUND,
            )

        self._count("hits")
        logger.debug("Cache HIT: %s[%s]", kind, key)

        return Response.succeed(data={"value": entry.value})

    def peek(self, kind: str, key: Hashable) -> CacheEntry[V] | None:
        """
        Returns a copy of the stored entry, expired or not, without touching statistics or LRU order.
        """
        store = self._kinds.get(kind)
        if store is None:
            return None

        with store.lock:
            entry = store.entries.get(key)

            if entry is None:
                return None

            return CacheEntry(
                entry.value, entry.created_at, entry.last_access, entry.access_count
            )

    def stats(self) -> CacheStats:
        with self._stats_lock:
            hits, misses, evictions = self._hits, self._misses, self._evictions

        return CacheStats(
            hits=hits,
            misses=misses,
            evictions=evictions,
            entries_by_kind=self.entries_by_kind(),
        )

    def entries_by_kind(self) -> dict[str, int]:
        result = {}

        for kind, store in self._snapshot_kinds():
            with store.lock:
                result[kind] = len(store.entries)

        return result

    def __len__(self) -> int:
        return sum(len(store.entries) for _, store in self._snapshot_kinds())

    # === data manipulators ===

    def put(self, kind: str, key: Hashable, value: V) -> None:
        """
        Inserts or overwrites an entry.

        Notes:
            - At or above the high-water mark, expired entries are swept first.
            - If the cache is still at capacity afterwards, one least-recently-used entry is evicted.
        """
        if len(self) >= self._config.high_water_mark:
            self.sweep()

        if key not in self._store_for(kind).entries and len(self) >= self._config.max_entries:
            self._evict_least_recently_used()

        store = self._store_for(kind)
        now = self._clock()

        with store.lock:
            store.entries[key] = CacheEntry(value=value, created_at=now, last_access=now)
            store.entries.move_to_end(key)

    def warm(self, kind: str, values: Mapping[Hashable, V]) -> int:
        """
        Bulk-loads entries for one kind, returning the number of entries written.
        """
        for key, value in values.items():
            self.put(kind, key, value)

        logger.info("Cache warmed: %d %s entries", len(values), kind)

        return len(values)

    def invalidate(self, key: Hashable) -> int:
        """
        Removes every entry stored under `key`, across all kinds.

        Returns:
            The number of entries removed.
        """
        removed = 0

        for _, store in self._snapshot_kinds():
            with store.lock:
                if store.entries.pop(key, None) is not None:
                    removed += 1

        if removed:
            logger.debug("Cache INVALIDATE: %s (%d entries)", key, removed)

        return removed

    def invalidate_kind(self, kind: str) -> int:
        store = self._kinds.get(kind)
        if store is None:
            return 0

        with store.lock:
            removed = len(store.entries)
            store.entries.clear()

        return removed

    def invalidate_all(self) -> int:
        """
        Clears every kind. Hit, miss, and eviction counters are left intact.
        """
        removed = 0

        for _, store in self._snapshot_kinds():
            with store.lock:
                removed += len(store.entries)
                store.entries.clear()

        logger.debug("Cache cleared: %d entries", removed)

        return removed

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    # --- sweeping ---

    def sweep(self) -> int:
        """
        Removes every expired entry across all kinds and adds the count to the eviction counter.

        Returns:
            The number of entries removed.

        Notes:
            - Each kind is scanned under its own lock; no lock is held across kinds.
        """
        now = self._clock()
        evicted = 0

        for _, store in self._snapshot_kinds():
            with store.lock:
                expired = [
                    key
                    for key, entry in store.entries.items()
                    if entry.is_expired(now, self.ttl)
                ]

                for key in expired:
                    del store.entries[key]

            evicted += len(expired)

        if evicted:
            self._count("evictions", evicted)
            logger.info("Cleaned up %d expired cache entries", evicted)

        return evicted

    def start(self) -> None:
        """
        Starts the background sweep thread. Calling `start()` on a running cache is a no-op.
        """
        if self.is_sweeping:
            return

        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name="cache-sweeper",
            daemon=True,
        )
        self._sweeper.start()
        logger.debug("Cache sweeper started (interval %.2fs)", self._config.sweep_interval)

    def stop(self, timeout: float | None = None) -> None:
        """
        Stops the background sweep. Entries and statistics are kept.
        """
        self._stop_event.set()
        self._running.set()

        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

        logger.debug("Cache sweeper stopped")

    def pause(self) -> None:
        self._running.clear()

    def resume(self) -> None:
        self._running.set()

    # === helper methods ===

    def _sweep_loop(self) -> None:
        interval = self._config.sweep_interval

        while not self._stop_event.wait(interval):
            self._running.wait()

            if self._stop_event.is_set():
                break

            self.sweep()

    def _store_for(self, kind: str) -> _KindStore[V]:
        store = self._kinds.get(kind)
        if store is not None:
            return store

        with self._kinds_lock:
            return self._kinds.setdefault(kind, _KindStore())

    def _snapshot_kinds(self) -> list[tuple[str, _KindStore[V]]]:
        with self._kinds_lock:
            return list(self._kinds.items())

    def _evict_least_recently_used(self) -> None:
        oldest: tuple[float, str, Hashable] | None = None

        for kind, store in self._snapshot_kinds():
            with store.lock:
                if not store.entries:
                    continue

                key, entry = next(iter(store.entries.items()))

                if oldest is None or entry.last_access < oldest[0]:
                    oldest = (entry.last_access, kind, key)

        if oldest is None:
            return

        _, kind, key = oldest
        store = self._kinds[kind]

        with store.lock:
            if store.entries.pop(key, None) is None:
                return

        self._count("evictions")
        logger.debug("Cache EVICT (LRU): %s[%s]", kind, key)

    def _count(self, counter: str, amount: int = 1) -> None:
        with self._stats_lock:
            setattr(self, f"_{counter}", getattr(self, f"_{counter}") + amount)

    # === dunder methods ===

    def __enter__(self) -> CacheLayer[V]:
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"CacheLayer(ttl={self.ttl}, max_entries={self._config.max_entries}, entries={len(self)})"
