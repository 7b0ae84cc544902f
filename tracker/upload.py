import time
import json
import logging
import threading
from dataclasses import dataclass

import requests

from tracker.sign import sign

log = logging.getLogger('upload')

API_PATH = "/api/v1/location"
BATCH_API_PATH = "/api/v1/location/batch"
JSON_CONTENT_TYPE = "application/json; charset=utf-8"
# (connect, read) in seconds. A request that runs out of either counts as a failed upload.
TIMEOUT = (30, 30)

class UploadException(Exception):
    pass

@dataclass(frozen=True)
class UploadOutcome:
    delivered: bool
    # True when we never tried the network because it wasn't reachable
    offline: bool = False

class Uploader(object):
    """
    Gets a sample to the collection server, or failing that into the offline cache so that it
    goes out later. Whenever a single upload succeeds we take that as a sign the network is back
    and try to push the whole cache up as one batch, which means there's no separate retry timer
    to look after: the backlog drains on the next good send.

    Nothing here raises on network problems. A failed send is just delivered=False and the sample
    is in the cache. The one thing that does propagate is a failure to write to the cache, since
    then the sample really is gone.

    Positional arguments:
    config -- callable returning the current settings.ReportingConfig
    cache -- cache.OfflineCache for samples that couldn't be sent
    network -- object with isReachable() and networkType()

    Keyword arguments:
    session -- requests.Session (or anything with a compatible post()) to send with. Without one
               each upload thread gets a Session of its own, since they aren't thread safe.
    clock -- returns the current unix time in seconds
    """

    def __init__(self, config, cache, network, session=None, clock=time.time):
        self.config = config
        self.cache = cache
        self.network = network
        self.sharedSession = session
        self.local = threading.local()
        self.clock = clock

    def upload(self, sample):
        if not self.network.isReachable():
            log.info("Network unreachable, caching sample")
            self.cache.add(sample)
            return UploadOutcome(delivered=False, offline=True)

        config = self.config()
        timestamp = int(self.clock())
        body = {'device_id': sample.deviceId}
        body.update(sample.locationItem())
        body['timestamp'] = timestamp
        body['signature'] = sign(sample.deviceId, timestamp, config.apiSecret)

        try:
            self.__post(config.serverBaseUrl, API_PATH, body)
        except (requests.RequestException, UploadException):
            log.exception("Sending location failed, caching sample")
            self.cache.add(sample)
            return UploadOutcome(delivered=False)

        log.info(f"Delivered location {sample.latitude}, {sample.longitude}")
        try:
            self.flushQueue()
        except Exception:
            # The sample itself went through, the cache will get another chance next time.
            log.exception("Flushing offline cache failed")
        return UploadOutcome(delivered=True)

    def flushQueue(self):
        if not self.network.isReachable():
            return 0
        samples = self.cache.list()
        if not samples:
            return 0

        config = self.config()
        timestamp = int(self.clock())
        # One timestamp and signature covers the whole batch
        body = {
            'device_id': config.deviceId,
            'locations': [s.locationItem() for s in samples],
            'timestamp': timestamp,
            'signature': sign(config.deviceId, timestamp, config.apiSecret),
        }

        log.debug(f"Sending {len(samples)} cached locations")
        try:
            self.__post(config.serverBaseUrl, BATCH_API_PATH, body)
        except (requests.RequestException, UploadException):
            log.exception("Sending cached locations failed, keeping them for later")
            return 0

        # Only clear after positive confirmation from the server. Anything cached while the batch
        # was in flight is cleared along with it (see DESIGN.md).
        self.cache.clear()
        log.info(f"Delivered {len(samples)} cached locations")
        return len(samples)

    def networkType(self):
        return self.network.networkType()

    def isReachable(self):
        return self.network.isReachable()

    def cachedCount(self):
        return self.cache.count()

    @property
    def session(self):
        if self.sharedSession is not None:
            return self.sharedSession
        if not hasattr(self.local, 'session'):
            self.local.session = requests.Session()
        return self.local.session

    def __post(self, baseUrl, path, body):
        resp = self.session.post(
            f"{baseUrl.rstrip('/')}{path}",
            data=json.dumps(body).encode('UTF-8'),
            headers={'Content-Type': JSON_CONTENT_TYPE},
            timeout=TIMEOUT,
        )
        if not 200 <= resp.status_code < 300:
            raise UploadException(f"Received bad response from server: {resp.status_code}")
        return resp
