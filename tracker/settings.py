import uuid
import logging
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlparse

log = logging.getLogger('settings')

class UploadMode(Enum):
    INTERVAL = 0
    DISPLACEMENT = 1

# The only values the settings surface ever offered. Anything else is rejected when it's set
# rather than being discovered later by the reporting code.
INTERVAL_OPTIONS = (10000, 30000, 60000, 300000)
DISTANCE_OPTIONS = (10, 30, 50, 100)

DEFAULT_UPLOAD_INTERVAL = 60000
DEFAULT_DISTANCE_THRESHOLD = 50
DEFAULT_SERVER_URL = "http://192.168.1.100:8000"
DEFAULT_API_SECRET = "your-secret-key-change-in-production"

@dataclass(frozen=True)
class ReportingConfig:
    uploadMode: UploadMode
    uploadIntervalMillis: int
    distanceThresholdMeters: float
    serverBaseUrl: str
    apiSecret: str
    deviceId: str

class Settings(object):
    """
    Persistent settings, stored as strings in the preference store. Components don't hold on to
    this object's values; they call current() whenever they need them, so a change made from the
    command line or elsewhere is picked up on the next sample.
    """

    def __init__(self, store):
        self.store = store

    @property
    def deviceId(self):
        # Generated the first time anyone asks and then never changes, the collection server
        # keys everything on it.
        deviceId = self.store.get('device_id')
        if deviceId is None:
            deviceId = f"tracker_{str(uuid.uuid4())[:8]}"
            self.store.set('device_id', deviceId)
            log.info(f"Generated device ID {deviceId}")
        return deviceId

    @property
    def uploadMode(self):
        try:
            return UploadMode(int(self.store.get('upload_mode', '0')))
        except ValueError:
            return UploadMode.INTERVAL

    @uploadMode.setter
    def uploadMode(self, mode):
        self.store.set('upload_mode', str(UploadMode(mode).value))

    @property
    def uploadInterval(self):
        return self.__getNumber('upload_interval', int, INTERVAL_OPTIONS, DEFAULT_UPLOAD_INTERVAL)

    @uploadInterval.setter
    def uploadInterval(self, millis):
        if millis not in INTERVAL_OPTIONS:
            raise ValueError(f"Upload interval must be one of {INTERVAL_OPTIONS}, got {millis}")
        self.store.set('upload_interval', str(int(millis)))

    @property
    def distanceThreshold(self):
        return self.__getNumber('distance_threshold', float, DISTANCE_OPTIONS, DEFAULT_DISTANCE_THRESHOLD)

    @distanceThreshold.setter
    def distanceThreshold(self, meters):
        if meters not in DISTANCE_OPTIONS:
            raise ValueError(f"Distance threshold must be one of {DISTANCE_OPTIONS}, got {meters}")
        self.store.set('distance_threshold', str(float(meters)))

    @property
    def serverUrl(self):
        return self.store.get('server_url', DEFAULT_SERVER_URL)

    @serverUrl.setter
    def serverUrl(self, url):
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError(f"Server URL must look like http(s)://host:port, got {url!r}")
        self.store.set('server_url', url.rstrip('/'))

    @property
    def apiSecret(self):
        return self.store.get('api_secret', DEFAULT_API_SECRET)

    @apiSecret.setter
    def apiSecret(self, secret):
        if not secret:
            raise ValueError("API secret must not be empty")
        self.store.set('api_secret', secret)

    def current(self):
        return ReportingConfig(
            uploadMode=self.uploadMode,
            uploadIntervalMillis=self.uploadInterval,
            distanceThresholdMeters=self.distanceThreshold,
            serverBaseUrl=self.serverUrl,
            apiSecret=self.apiSecret,
            deviceId=self.deviceId,
        )

    def __getNumber(self, key, kind, options, default):
        raw = self.store.get(key)
        if raw is None:
            return kind(default)
        try:
            value = kind(float(raw))
        except ValueError:
            log.warning(f"Ignoring unreadable setting {key}={raw!r}")
            return kind(default)
        if value not in options:
            log.warning(f"Ignoring unrecognised setting {key}={raw!r}")
            return kind(default)
        return value
