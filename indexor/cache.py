import logging
import threading
import time

from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    # shard id -> sequence number the value was computed against
    shard_sequences: dict[int, int]


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    computations: int = 0
    shared_waits: int = 0
    invalidations: int = 0
    expirations: int = 0
    evictions: int = 0


def fingerprint(canonical_query: str, page: int, size: int, allow_partial: bool = False) -> str:
    return f"{canonical_query}|page={page}|size={size}|partial={int(allow_partial)}"


class ResultCache:
    """
    Memoizes query results keyed by fingerprint.

    An entry is served only while it is younger than `ttl` seconds and every shard it
    was computed against still reports the same sequence number. Stale entries are
    dropped when they are next looked up, there is no sweep.

    `get_or_compute` runs at most one computation per fingerprint at a time; other
    callers for the same fingerprint wait on the in-flight future.
    """

    def __init__(
        self,
        ttl: float = 30.0,
        max_size: int = 100_000,
        sequence_of: Callable[[int], int] | None = None,
        clock=time.monotonic,
    ):
        self.ttl = ttl
        self.max_size = max_size
        self.sequence_of = sequence_of
        self.clock = clock

        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._in_flight: dict[str, Future] = {}
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return self.get(key)[0]

    def clear(self):
        with self._lock:
            self._entries.clear()

    def snapshot(self, shard_ids) -> dict[int, int]:
        if self.sequence_of is None:
            return {}
        return {shard_id: self.sequence_of(shard_id) for shard_id in shard_ids}

    def _valid_entry(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self.clock() - entry.created_at > self.ttl:
            del self._entries[key]
            self.stats.expirations += 1
            logger.debug(f"Cache entry {key} expired")
            return None

        if self.sequence_of is not None:
            for shard_id, sequence_number in entry.shard_sequences.items():
                if self.sequence_of(shard_id) != sequence_number:
                    del self._entries[key]
                    self.stats.invalidations += 1
                    logger.debug(f"Cache entry {key} invalidated by shard {shard_id}")
                    return None

        self._entries.move_to_end(key)
        return entry

    def get(self, key: str) -> tuple[bool, Any]:
        with self._lock:
            entry = self._valid_entry(key)
            if entry is None:
                self.stats.misses += 1
                return False, None

            self.stats.hits += 1
            return True, entry.value

    def put(self, key: str, value, shard_sequences: dict[int, int]):
        with self._lock:
            self._put(key, value, shard_sequences)

    def _put(self, key, value, shard_sequences):
        self._entries[key] = CacheEntry(value, self.clock(), dict(shard_sequences))
        self._entries.move_to_end(key)

        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self.stats.evictions += 1

    def get_or_compute(self, key: str, shard_ids, compute: Callable[[], Any], cacheable=None):
        """
        Returns the cached value for `key` or computes it. Values rejected by
        `cacheable` are handed to every waiter but not stored.
        """
        with self._lock:
            entry = self._valid_entry(key)
            if entry is not None:
                self.stats.hits += 1
                return entry.value

            self.stats.misses += 1
            future = self._in_flight.get(key)
            owner = future is None
            if owner:
                future = self._in_flight[key] = Future()
                self.stats.computations += 1
                # taken before computing, a write that lands mid-computation invalidates the entry
                shard_sequences = self.snapshot(shard_ids)
            else:
                self.stats.shared_waits += 1

        if not owner:
            return future.result()

        try:
            value = compute()
        except BaseException as e:
            with self._lock:
                del self._in_flight[key]
            future.set_exception(e)
            raise

        with self._lock:
            if cacheable is None or cacheable(value):
                self._put(key, value, shard_sequences)
            del self._in_flight[key]
        future.set_result(value)

        return value
