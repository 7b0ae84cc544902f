import json
import logging
import threading

from tracker.data import PositionSample

log = logging.getLogger('cache')

CACHE_KEY = 'cached_locations'
SEQUENCE_KEY = 'cached_locations_seq'
MAX_CACHE_SIZE = 100

class OfflineCache(object):
    """
    Samples we couldn't deliver, oldest first, kept in the preference store as one JSON list
    under a fixed key. It only ever holds MAX_CACHE_SIZE samples; adding another when it's full
    throws away the oldest one. This is deliberately not a general message queue: if the unit is
    offline for a long time we'd rather send the last 100 fixes than try to keep everything.

    Several uploads can be running at the same time and any of them may add to the cache while
    another one is clearing it after a batch went through, so every operation holds the lock for
    its whole read-modify-write. The network calls themselves never happen under the lock.

    Looking at the cache is forgiving (missing or mangled data just means an empty cache) but
    changing it is not: if a sample can't be saved, or the existing backlog can't be read back
    before writing, the caller needs to know, otherwise samples are lost without a trace.

    Positional arguments:
    store -- object with get/set/delete by key and an atomic() transaction context
             (normally data.PreferenceStore)
    """

    def __init__(self, store, capacity=MAX_CACHE_SIZE):
        self.store = store
        self.capacity = capacity
        self.lock = threading.RLock()

    def add(self, sample):
        with self.lock, self.store.atomic():
            samples = self.__read()
            while len(samples) >= self.capacity:
                evicted = samples.pop(0)
                log.debug(f"Cache full, dropping oldest sample {evicted.localSequenceId}")
            stored = PositionSample.fromDict(sample.toDict())
            stored.localSequenceId = self.__nextSequence()
            samples.append(stored)
            self.__save(samples)
            log.debug(f"Cached sample {stored.localSequenceId}, {len(samples)} pending")

    def list(self):
        with self.lock:
            return self.__load()

    def count(self):
        return len(self.list())

    def clear(self):
        with self.lock:
            self.store.delete(CACHE_KEY)

    def removeFirst(self, n):
        with self.lock, self.store.atomic():
            samples = self.__read()
            if n <= 0 or not samples:
                return
            self.__save(samples[min(n, len(samples)):])

    def __load(self):
        try:
            return self.__read()
        except Exception:
            log.exception("Reading offline cache failed, treating it as empty")
            return []

    def __read(self):
        # Store errors propagate from here. add/removeFirst write back what they read, so for them
        # a failed read must not look like an empty cache. Only corrupt contents count as empty.
        raw = self.store.get(CACHE_KEY)
        if raw is None:
            return []
        try:
            return [PositionSample.fromDict(d) for d in json.loads(raw)]
        except (ValueError, TypeError, KeyError):
            log.warning("Offline cache contents are corrupt, treating it as empty")
            return []

    def __save(self, samples):
        if samples:
            self.store.set(CACHE_KEY, json.dumps([s.toDict() for s in samples]))
        else:
            self.store.delete(CACHE_KEY)

    def __nextSequence(self):
        try:
            seq = int(self.store.get(SEQUENCE_KEY, '0')) + 1
        except ValueError:
            seq = 1
        self.store.set(SEQUENCE_KEY, str(seq))
        return seq
