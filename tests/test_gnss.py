"""Tests for NMEA fix parsing and the GNSS reader thread."""

import queue

import pytest
import pynmea2

import tracker.gnss as gnss
from tracker.gnss import parseFix, GnssThread

GOOD_FIX = "$GPGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,*47\r\n"
NO_FIX = "$GPGGA,123519,4807.038,N,01131.000,E,0,00,,,M,,M,,*52\r\n"


def test_parse_good_fix():
    fix = parseFix(GOOD_FIX)
    assert fix['lat'] == pytest.approx(48.1173)
    assert fix['lon'] == pytest.approx(11.516667, abs=1e-6)
    assert fix['accuracy'] == pytest.approx(0.9 * gnss.UERE_M)
    assert fix['time']


def test_multi_constellation_talker():
    fix = parseFix("$GNGGA,092750.000,5321.6802,N,00630.3372,W,1,8,1.03,61.7,M,55.2,M,,")
    assert fix['lat'] == pytest.approx(53.361337, abs=1e-6)
    assert fix['lon'] == pytest.approx(-6.50562, abs=1e-6)


def test_no_fix_is_ignored():
    assert parseFix(NO_FIX) is None


def test_other_sentences_are_ignored():
    assert parseFix("$GPRMC,123519,A,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W*6A") is None
    assert parseFix("") is None


def test_bad_checksum_raises():
    with pytest.raises(pynmea2.ParseError):
        parseFix(GOOD_FIX.replace("*47", "*48"))


class FakeSerial:
    def __init__(self, lines, thread):
        self.lines = list(lines)
        self.thread = thread
        self.closed = False

    def readline(self):
        if not self.lines:
            self.thread.stop()
            return b''
        return self.lines.pop(0).encode('ASCII')

    def close(self):
        self.closed = True


def test_thread_posts_fixes(monkeypatch):
    q = queue.Queue()
    thread = GnssThread(q, "/dev/ttyTEST")
    ports = []

    def openPort(port, timeout=None):
        ports.append(FakeSerial([NO_FIX, "$GPGGA,garbage*00\r\n", GOOD_FIX], thread))
        return ports[-1]

    monkeypatch.setattr(gnss.serial, "Serial", openPort)
    thread.run()

    event = q.get_nowait()
    assert event[0] == 'LocationFix'
    assert event[1]['lat'] == pytest.approx(48.1173)
    assert q.empty()
    assert ports[0].closed
