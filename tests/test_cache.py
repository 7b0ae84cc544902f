"""Tests for the offline cache."""

import threading
from contextlib import nullcontext

import pytest
from peewee import OperationalError

from tracker.cache import OfflineCache, CACHE_KEY, MAX_CACHE_SIZE


def test_empty_cache(cache):
    assert cache.count() == 0
    assert cache.list() == []


def test_add_keeps_order_and_assigns_sequence(cache, sample):
    for i in range(3):
        cache.add(sample(lat=float(i)))

    pending = cache.list()
    assert [s.latitude for s in pending] == [0.0, 1.0, 2.0]
    assert [s.localSequenceId for s in pending] == [1, 2, 3]


def test_add_does_not_touch_callers_sample(cache, sample):
    s = sample()
    cache.add(s)
    assert s.localSequenceId == 0


def test_capacity_evicts_oldest(cache, sample):
    for i in range(MAX_CACHE_SIZE + 25):
        cache.add(sample(lat=i / 10))
        assert cache.count() <= MAX_CACHE_SIZE

    pending = cache.list()
    assert len(pending) == MAX_CACHE_SIZE
    assert [s.latitude for s in pending] == [i / 10 for i in range(25, MAX_CACHE_SIZE + 25)]


def test_clear(cache, sample):
    cache.add(sample())
    cache.add(sample())
    cache.clear()
    assert cache.count() == 0
    assert cache.list() == []


def test_remove_first(cache, sample):
    for i in range(5):
        cache.add(sample(lat=float(i)))

    cache.removeFirst(2)
    assert [s.latitude for s in cache.list()] == [2.0, 3.0, 4.0]

    cache.removeFirst(0)
    assert cache.count() == 3

    cache.removeFirst(10)
    assert cache.count() == 0


def test_survives_reopen(store, sample):
    OfflineCache(store).add(sample(lat=12.5))
    assert [s.latitude for s in OfflineCache(store).list()] == [12.5]


@pytest.mark.parametrize("raw", ["not json", '{"a": 1}', '[{"latitude": 1}]', '[{"deviceId": "d", "longitude": 500, "latitude": 0, "observedAt": "x"}]'])
def test_corrupt_contents_read_as_empty(store, cache, raw):
    store.set(CACHE_KEY, raw)
    assert cache.list() == []
    assert cache.count() == 0


def test_add_after_corruption_starts_fresh(store, cache, sample):
    store.set(CACHE_KEY, "garbage")
    cache.add(sample())
    assert cache.count() == 1


class BrokenStore:
    def __init__(self, failReads=False, failWrites=False):
        self.values = {}
        self.failReads = failReads
        self.failWrites = failWrites

    def get(self, key, default=None):
        if self.failReads:
            raise OperationalError("disk I/O error")
        return self.values.get(key, default)

    def set(self, key, value):
        if self.failWrites:
            raise OperationalError("database is locked")
        self.values[key] = value

    def delete(self, key):
        if self.failWrites:
            raise OperationalError("database is locked")
        self.values.pop(key, None)

    def atomic(self):
        return nullcontext()


def test_read_errors_are_swallowed():
    cache = OfflineCache(BrokenStore(failReads=True))
    assert cache.list() == []
    assert cache.count() == 0


def test_write_errors_propagate(sample):
    cache = OfflineCache(BrokenStore(failWrites=True))
    with pytest.raises(OperationalError):
        cache.add(sample())
    with pytest.raises(OperationalError):
        cache.clear()


def test_read_error_during_add_keeps_backlog(sample):
    store = BrokenStore()
    cache = OfflineCache(store)
    for i in range(5):
        cache.add(sample(lat=float(i)))

    store.failReads = True
    with pytest.raises(OperationalError):
        cache.add(sample(lat=99.0))
    with pytest.raises(OperationalError):
        cache.removeFirst(2)

    store.failReads = False
    assert [s.latitude for s in cache.list()] == [0.0, 1.0, 2.0, 3.0, 4.0]


def test_concurrent_adds_never_lose_or_exceed(cache, sample):
    def worker(n):
        for i in range(20):
            cache.add(sample(lat=float(n), lon=float(i)))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    pending = cache.list()
    assert len(pending) == 80
    ids = [s.localSequenceId for s in pending]
    assert ids == sorted(ids)
    assert len(set(ids)) == 80
    # Each worker's samples keep their relative order
    for n in range(4):
        assert [s.longitude for s in pending if s.latitude == n] == [float(i) for i in range(20)]


def test_adds_racing_removals_leave_a_suffix(cache, sample):
    workers = 3
    perWorker = 40
    seen = []
    done = threading.Event()

    def adder(n):
        for i in range(perWorker):
            cache.add(sample(lat=float(n), lon=float(i)))

    def remover():
        rounds = 0
        while not done.is_set():
            if rounds % 7 == 6:
                cache.clear()
            else:
                cache.removeFirst(3)
            seen.append(cache.count())
            rounds += 1

    adders = [threading.Thread(target=adder, args=(n,)) for n in range(workers)]
    trimmer = threading.Thread(target=remover)
    trimmer.start()
    for t in adders:
        t.start()
    for t in adders:
        t.join()
    done.set()
    trimmer.join()

    assert max(seen, default=0) <= MAX_CACHE_SIZE
    pending = cache.list()
    assert len(pending) <= MAX_CACHE_SIZE
    # Removal and eviction only ever take from the front, so what's left is the newest run of adds
    total = workers * perWorker
    ids = [s.localSequenceId for s in pending]
    assert ids == list(range(total - len(ids) + 1, total + 1))
    for n in range(workers):
        longitudes = [s.longitude for s in pending if s.latitude == n]
        assert longitudes == sorted(longitudes)
        if longitudes:
            assert longitudes[-1] == float(perWorker - 1)
