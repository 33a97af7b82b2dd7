import threading
import time

import pytest

from indexor.cache import ResultCache, fingerprint

from tests.conftest import FakeClock


def test_put_and_get():
    cache = ResultCache()
    cache.put("q", "value", {})

    assert cache.get("q") == (True, "value")
    assert cache.get("other") == (False, None)
    assert cache.stats.hits == 1
    assert cache.stats.misses == 1


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = ResultCache(ttl=10, clock=clock)
    cache.put("q", "value", {})

    clock.advance(10)
    assert cache.get("q") == (True, "value")

    clock.advance(1)
    assert cache.get("q") == (False, None)
    assert cache.stats.expirations == 1
    assert len(cache) == 0


def test_shard_write_invalidates_entry():
    sequences = {0: 5, 1: 3}
    cache = ResultCache(sequence_of=sequences.__getitem__)
    cache.put("q", "value", cache.snapshot([0, 1]))

    assert "q" in cache
    sequences[1] += 1
    assert cache.get("q") == (False, None)
    assert cache.stats.invalidations == 1


def test_least_recently_used_entry_is_evicted():
    cache = ResultCache(max_size=2)
    cache.put("a", 1, {})
    cache.put("b", 2, {})
    cache.get("a")
    cache.put("c", 3, {})

    assert cache.get("b") == (False, None)
    assert cache.get("a") == (True, 1)
    assert cache.get("c") == (True, 3)
    assert cache.stats.evictions == 1


def test_concurrent_callers_share_one_computation():
    cache = ResultCache()
    calls = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)
    results = []

    def compute():
        with lock:
            calls.append(1)
        time.sleep(0.2)
        return "value"

    def worker():
        barrier.wait()
        results.append(cache.get_or_compute("q", [], compute))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(calls) == 1
    assert results == ["value"] * 8
    assert cache.stats.computations == 1


def test_errors_reach_the_caller_and_are_not_cached():
    cache = ResultCache()
    calls = []

    def failing():
        calls.append(1)
        raise ValueError("boom")

    for _ in range(2):
        with pytest.raises(ValueError):
            cache.get_or_compute("q", [], failing)

    assert len(calls) == 2
    assert len(cache) == 0


def test_rejected_values_are_not_stored():
    cache = ResultCache()

    assert cache.get_or_compute("q", [], lambda: "partial", cacheable=lambda x: False) == "partial"
    assert len(cache) == 0


def test_write_during_computation_invalidates_result():
    sequences = {0: 1}
    cache = ResultCache(sequence_of=sequences.__getitem__)

    def compute():
        sequences[0] += 1
        return "stale"

    cache.get_or_compute("q", [0], compute)

    assert cache.get("q") == (False, None)


def test_fingerprint_includes_pagination():
    assert fingerprint("apple", 0, 20) != fingerprint("apple", 1, 20)
    assert fingerprint("apple", 0, 20) != fingerprint("apple", 0, 10)
    assert fingerprint("apple", 0, 20) != fingerprint("apple", 0, 20, allow_partial=True)
