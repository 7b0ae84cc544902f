import threading
import time
import logging
import serial
import pynmea2

from tracker.data import isoNow

log = logging.getLogger('gnss')

# Rough 1-sigma range error for a consumer GPS receiver. HDOP times this gives a horizontal
# accuracy in meters that's about as good as anything the NMEA stream tells us directly.
UERE_M = 5.0

def parseFix(line):
    """
    Turn one NMEA line into a fix dict (lat, lon, accuracy, time), or None if it isn't a GGA
    sentence with a valid fix.
    """
    if not line.startswith(("$GPGGA", "$GNGGA")):
        return None
    # Little silly to use PyNMEA2 for just this one thing, but the NMEA sentence format is oddly
    # complicated and this saves doing our own lat/lon format conversions.
    sentence = pynmea2.parse(line.strip())
    # Only send on valid fixes, before gps_qual changes the results are either null or have very
    # high error.
    if not sentence.gps_qual:
        return None
    try:
        accuracy = float(sentence.horizontal_dil) * UERE_M
    except (TypeError, ValueError):
        accuracy = None
    return {'lat': sentence.latitude, 'lon': sentence.longitude, 'accuracy': accuracy, 'time': isoNow()}

class GnssThread(threading.Thread):
    def __init__(self, q, NMEAPort):
        threading.Thread.__init__(self, daemon=True)
        self.q = q
        self.NMEAPort = NMEAPort
        self.live = True
        self.nmea = None

    def run(self):
        log.debug(f"Listening for NMEA on {self.NMEAPort}...")
        while self.live:
            try:
                if self.nmea is None:
                    self.nmea = serial.Serial(self.NMEAPort, timeout=5)
                line = self.nmea.readline().decode('ASCII', errors='replace')
            except serial.SerialException:
                # The modem drops its USB serial ports now and then, just reopen
                log.exception(f"Reading {self.NMEAPort} failed, reopening")
                self.__close()
                time.sleep(5)
                continue

            try:
                fix = parseFix(line)
            except pynmea2.ParseError:
                log.warning(f"Unparsable NMEA sentence: {line.strip()}")
                continue
            if fix is not None:
                self.q.put(['LocationFix', fix])
        self.__close()

    def stop(self):
        self.live = False

    def __close(self):
        if self.nmea is not None:
            try:
                self.nmea.close()
            except serial.SerialException:
                pass
            self.nmea = None
