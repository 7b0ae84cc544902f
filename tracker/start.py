#!/usr/bin/env python3

import logging
import argparse
import queue

from tracker.data import openDatabase, PreferenceStore, PositionSample
from tracker.settings import Settings, UploadMode, INTERVAL_OPTIONS, DISTANCE_OPTIONS
from tracker.cache import OfflineCache
from tracker.network import NetworkMonitor
from tracker.upload import Uploader
from tracker.report import ReportingEngine
from tracker.gnss import GnssThread
from tracker.panel import PanelThread, SHORT_PRESS_S

def __main__(argv=None):
    runner = Runner(argv)
    runner.setup()
    try:
        while True:
            runner.step()
    except KeyboardInterrupt:
        pass
    finally:
        runner.shutdown()

def parseArgs(argv=None):
    parser = argparse.ArgumentParser(description='Location tracker service.')
    parser.add_argument('-l', '--log', dest='logLevel', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], default='INFO', help='Set the logging level')
    parser.add_argument('--db', dest='db', default='tracker.sqlite', help='SQLite file for settings and the offline cache')
    # On the Telit modems the NMEA stream shows up on the second USB serial device
    parser.add_argument('--nmea', dest='nmea', default='/dev/ttyUSB1', help='Serial device producing NMEA')
    parser.add_argument('--server', dest='server', help='Collection server base URL, e.g. http://host:8000')
    parser.add_argument('--secret', dest='secret', help='API secret shared with the collection server')
    parser.add_argument('--mode', dest='mode', choices=['interval', 'displacement'], help='Reporting mode')
    parser.add_argument('--interval', dest='interval', type=int, choices=INTERVAL_OPTIONS, help='Upload interval in milliseconds (interval mode)')
    parser.add_argument('--distance', dest='distance', type=int, choices=DISTANCE_OPTIONS, help='Distance threshold in meters (displacement mode)')
    parser.add_argument('--no-panel', dest='panel', action='store_false', help='Run without the GPIO LED/button panel')
    return parser.parse_args(argv)

class Runner(object):
    def __init__(self, argv=None):
        self.args = parseArgs(argv)

        logging.basicConfig(level=getattr(logging, self.args.logLevel))
        self.log = logging.getLogger("tracker")
        self.log.info("Tracker starting up.")

        openDatabase(self.args.db)
        self.settings = Settings(PreferenceStore())
        self.applyArgs()

        self.q = queue.Queue()
        self.cache = OfflineCache(PreferenceStore())
        self.uploader = Uploader(self.settings.current, self.cache, NetworkMonitor())
        self.engine = ReportingEngine(self.settings.current, self.uploader)
        self.engine.addListener(lambda status: self.q.put(['UploadStatus', status]))

        self.gnss = None
        self.panel = None

    def applyArgs(self):
        # Anything given on the command line is saved and used on later starts too
        if self.args.server:
            self.settings.serverUrl = self.args.server
        if self.args.secret:
            self.settings.apiSecret = self.args.secret
        if self.args.mode:
            self.settings.uploadMode = UploadMode[self.args.mode.upper()]
        if self.args.interval:
            self.settings.uploadInterval = self.args.interval
        if self.args.distance:
            self.settings.distanceThreshold = self.args.distance

        config = self.settings.current()
        self.log.info(f"Device {config.deviceId} reporting to {config.serverBaseUrl} in {config.uploadMode.name.lower()} mode")

    def setup(self):
        self.gnss = GnssThread(self.q, self.args.nmea)
        self.gnss.start()
        if self.args.panel:
            self.panel = PanelThread(self.q)
            self.panel.start()
        pending = self.cache.count()
        if pending:
            self.log.info(f"{pending} cached locations waiting from a previous run")

    # And now we just go into event loop
    def step(self):
        event = self.q.get(block=True)
        self.log.debug(f"Received {event[0]}: {event[1]}")

        if event[0] == 'LocationFix':
            self.handleLocationFix(event)
        elif event[0] == "PanelEvent":
            self.handlePanelEvent(event)
        elif event[0] == "UploadStatus":
            self.handleUploadStatus(event)

    def handleLocationFix(self, event):
        fix = event[1]
        try:
            sample = PositionSample(
                deviceId=self.settings.deviceId,
                longitude=fix['lon'],
                latitude=fix['lat'],
                observedAt=fix['time'],
                accuracy=fix.get('accuracy'),
            )
        except ValueError:
            self.log.warning(f"Discarding bad fix {fix}")
            return
        self.engine.handleSample(sample)

    def handlePanelEvent(self, event):
        # User pressed a button
        if event[1]['type'] == 'CtlButton' and event[1]["time"] < SHORT_PRESS_S:
            self.log.info("Manual upload requested")
            self.engine.manualUpload()

    def handleUploadStatus(self, event):
        status = event[1]
        if self.panel is not None:
            self.panel.showStatus(status)

    def shutdown(self):
        self.log.info("Shutting down, waiting for uploads in flight")
        for thread in (self.gnss, self.panel):
            if thread is not None:
                thread.stop()
        self.engine.join(timeout=60)

if __name__ == "__main__":
    __main__()
