"""Shared test fixtures."""

import json

import pytest

from tracker.data import db, openDatabase, PreferenceStore, PositionSample
from tracker.cache import OfflineCache
from tracker.settings import Settings


class FakeNetwork:
    def __init__(self, reachable=True, kind="wifi"):
        self.reachable = reachable
        self.kind = kind

    def isReachable(self):
        return self.reachable

    def networkType(self):
        return self.kind if self.reachable else "offline"


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class FakeSession:
    """Records posts. status is an HTTP code, or an exception instance to raise."""

    def __init__(self, status=200):
        self.status = status
        self.calls = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({
            'url': url,
            'body': json.loads(data.decode('UTF-8')),
            'headers': headers,
            'timeout': timeout,
        })
        status = self.status(url) if callable(self.status) else self.status
        if isinstance(status, Exception):
            raise status
        return FakeResponse(status)

    def urls(self):
        return [c['url'] for c in self.calls]


@pytest.fixture(autouse=True)
def database(tmp_path):
    openDatabase(str(tmp_path / "tracker.sqlite"))
    yield db
    db.close()


@pytest.fixture
def store():
    return PreferenceStore()


@pytest.fixture
def cache(store):
    return OfflineCache(store)


@pytest.fixture
def settings(store):
    s = Settings(store)
    s.serverUrl = "http://collector.test:8000"
    s.apiSecret = "secret"
    return s


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def session():
    return FakeSession()


def makeSample(lat=45.0, lon=7.0, deviceId="dev1", **kwargs):
    kwargs.setdefault('observedAt', "2024-01-01T12:00:00")
    return PositionSample(deviceId=deviceId, longitude=lon, latitude=lat, **kwargs)


@pytest.fixture
def sample():
    return makeSample
