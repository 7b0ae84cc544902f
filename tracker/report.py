import math
import time
import logging
import threading
from dataclasses import dataclass, replace

from tracker.settings import UploadMode

log = logging.getLogger('report')

EARTH_RADIUS_M = 6371008.8

DELIVERED = 'delivered'
QUEUED_OFFLINE = 'queued-offline'
QUEUED_AFTER_ERROR = 'queued-after-error'
# Sample didn't meet the trigger, nothing was sent
SKIPPED = 'skipped'
# The upload blew up before the sample was delivered or cached
NOT_SAVED = 'not-saved'

@dataclass(frozen=True)
class UploadStatus:
    status: str
    cachedCount: int
    manual: bool = False

def distance(lat1, lon1, lat2, lon2):
    """Great-circle (haversine) distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))

def threadDispatch(task):
    thread = threading.Thread(target=task, daemon=True)
    thread.start()
    return thread

class ReportingEngine(object):
    """
    Decides which samples get uploaded. There are two modes and only one is active at a time:

    * Interval: upload if at least uploadIntervalMillis have passed since the last report.
    * Displacement: upload if we've moved at least distanceThresholdMeters from the last
      reported position.

    Either way the very first sample always goes. Uploads run in the background so a slow server
    never holds up the next sample; if samples come in faster than the network round trip there
    can be several uploads in flight at once, and they can arrive at the server in any order.

    Every sample gets exactly one status out to the listeners: skipped when it didn't trigger,
    otherwise whatever became of the upload, including not-saved if it failed outright.

    When an upload finishes the baseline (last report time/position) moves forward if it was
    delivered, or if it was cached because there was no network at all. Without the second case
    every sample during a long offline stretch would trigger and go into the cache. A send that
    failed while the network looked fine does not move the baseline, so the next sample tries
    again right away.

    Positional arguments:
    config -- callable returning the current settings.ReportingConfig
    uploader -- upload.Uploader

    Keyword arguments:
    dispatch -- runs an upload task; default starts a thread per upload
    clock -- returns the current time in seconds
    """

    def __init__(self, config, uploader, dispatch=threadDispatch, clock=time.time):
        self.config = config
        self.uploader = uploader
        self.dispatch = dispatch
        self.clock = clock
        self.lock = threading.Lock()
        self.listeners = []
        self.inFlight = []

        self.lastReportTime = None
        self.lastReportedPosition = None
        self.lastSample = None

    def addListener(self, callback):
        self.listeners.append(callback)

    def handleSample(self, sample):
        """Feed in a new position sample. Returns True if it triggered an upload."""
        now = self.clock()
        config = self.config()
        with self.lock:
            self.lastSample = sample
            trigger = self.__shouldUpload(sample, now, config)
        if trigger:
            self.__startUpload(sample, now, manual=False)
        else:
            self.__emit(UploadStatus(SKIPPED, self.uploader.cachedCount()))
        return trigger

    def manualUpload(self):
        """Upload the most recent sample regardless of mode. Returns False if we have none yet."""
        with self.lock:
            sample = self.lastSample
        if sample is None:
            log.warning("Manual upload requested but no location is known yet")
            return False
        self.__startUpload(sample, self.clock(), manual=True)
        return True

    def join(self, timeout=None):
        """Wait for uploads that are still in flight, e.g. before shutting down."""
        with self.lock:
            pending = list(self.inFlight)
        for task in pending:
            task.join(timeout)

    def __shouldUpload(self, sample, now, config):
        if config.uploadMode == UploadMode.INTERVAL:
            if self.lastReportTime is None:
                return True
            return (now - self.lastReportTime) * 1000 >= config.uploadIntervalMillis
        if config.uploadMode == UploadMode.DISPLACEMENT:
            if self.lastReportedPosition is None:
                return True
            lat, lon = self.lastReportedPosition
            moved = distance(lat, lon, sample.latitude, sample.longitude)
            log.debug(f"Moved {moved:.1f}m since last report")
            return moved >= config.distanceThresholdMeters
        return False

    def __startUpload(self, sample, when, manual):
        def task():
            try:
                self.__upload(sample, when, manual)
            except Exception:
                # Most likely the cache couldn't be written, so the sample is gone
                log.exception("Upload failed")
                self.__emit(UploadStatus(NOT_SAVED, self.uploader.cachedCount(), manual))
        handle = self.dispatch(task)
        if hasattr(handle, "is_alive"):
            with self.lock:
                self.inFlight = [t for t in self.inFlight if t.is_alive()] + [handle]

    def __upload(self, sample, when, manual):
        config = self.config()
        if not sample.deviceId:
            sample = replace(sample, deviceId=config.deviceId)
        if sample.networkStatus is None:
            sample = replace(sample, networkStatus=self.uploader.networkType())

        outcome = self.uploader.upload(sample)

        if outcome.delivered or outcome.offline:
            with self.lock:
                # Uploads can finish out of order, never move the baseline backwards
                if self.lastReportTime is None or when >= self.lastReportTime:
                    self.lastReportTime = when
                    self.lastReportedPosition = (sample.latitude, sample.longitude)

        if outcome.delivered:
            status = DELIVERED
        elif outcome.offline:
            status = QUEUED_OFFLINE
        else:
            status = QUEUED_AFTER_ERROR
        self.__emit(UploadStatus(status, self.uploader.cachedCount(), manual))

    def __emit(self, status):
        level = logging.DEBUG if status.status == SKIPPED else logging.INFO
        log.log(level, f"Upload status: {status.status}, {status.cachedCount} cached")
        for callback in list(self.listeners):
            try:
                callback(status)
            except Exception:
                log.exception("Status listener failed")
