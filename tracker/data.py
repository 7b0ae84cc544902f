import datetime
import math
from dataclasses import dataclass, asdict
from typing import Optional

from peewee import *

# The database path isn't known until the runner parses its arguments (and tests want their own
# file), so it's initialised later by openDatabase(). Everything the unit keeps between restarts
# lives in here: settings, the offline cache, and on the collector side the received locations.
db = SqliteDatabase(None)

NETWORK_STATUSES = ('wifi', 'cellular', 'unknown', 'offline')

class Preference(Model):
    # Dumb key/value storage. The offline cache and the settings both sit on top of this rather
    # than having tables of their own, so values are always strings and callers do their own
    # encoding.
    key = CharField(primary_key=True)
    value = TextField()

    class Meta:
        database = db

class Location(Model):
    # Only used by the collector (trackserv) to keep what devices have sent in.
    deviceId = CharField(index=True)
    longitude = FloatField()
    latitude = FloatField()
    locationTime = CharField()
    accuracy = FloatField(null=True)
    networkStatus = CharField(null=True)
    batch = BooleanField(default=False)
    received = DateTimeField(default=datetime.datetime.now)

    class Meta:
        database = db

def openDatabase(path):
    db.init(path, pragmas={'journal_mode': 'wal'})
    db.connect(reuse_if_open=True)
    db.create_tables([Preference, Location])
    return db

class PreferenceStore(object):
    """
    get/set/delete of string values by key. This is the only thing the cache and settings know
    about persistence, which makes them easy to point at something else in tests.
    """

    def get(self, key, default=None):
        try:
            return Preference.get_by_id(key).value
        except Preference.DoesNotExist:
            return default

    def set(self, key, value):
        Preference.replace(key=key, value=value).execute()

    def delete(self, key):
        Preference.delete().where(Preference.key == key).execute()

    def atomic(self):
        return db.atomic()

@dataclass
class PositionSample:
    deviceId: str
    longitude: float
    latitude: float
    observedAt: str
    accuracy: Optional[float] = None
    networkStatus: Optional[str] = None
    # Only the offline cache hands these out. 0 means the sample was never persisted.
    localSequenceId: int = 0

    def __post_init__(self):
        self.longitude = float(self.longitude)
        self.latitude = float(self.latitude)
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if self.accuracy is not None:
            self.accuracy = float(self.accuracy)
            if not 0.0 <= self.accuracy < math.inf:
                raise ValueError(f"Accuracy must be a finite non-negative number: {self.accuracy}")
        if self.networkStatus is not None and self.networkStatus not in NETWORK_STATUSES:
            raise ValueError(f"Unknown network status: {self.networkStatus}")

    def toDict(self):
        return asdict(self)

    @classmethod
    def fromDict(cls, d):
        return cls(**d)

    def locationItem(self):
        """The per-location part of the wire format, shared by single and batch uploads."""
        item = {
            'longitude': self.longitude,
            'latitude': self.latitude,
            'location_time': self.observedAt,
        }
        # Absent fields are left out entirely, the server has never been sent nulls for these.
        if self.accuracy is not None:
            item['accuracy'] = self.accuracy
        if self.networkStatus is not None:
            item['network_status'] = self.networkStatus
        return item

def isoNow():
    return datetime.datetime.now().strftime('%Y-%m-%dT%H:%M:%S')
