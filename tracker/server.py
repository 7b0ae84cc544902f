import json
import time
import logging
import argparse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from tracker.data import db, openDatabase, Location
from tracker.sign import verify
from tracker.upload import API_PATH, BATCH_API_PATH
from tracker.settings import DEFAULT_API_SECRET

log = logging.getLogger('server')

# How far a request's timestamp may be from our clock before we refuse it
MAX_SKEW_S = 300

class CollectorHandler(BaseHTTPRequestHandler):
    # Set by makeServer()
    secret = DEFAULT_API_SECRET
    maxSkew = MAX_SKEW_S

    def do_POST(self):
        if self.path not in (API_PATH, BATCH_API_PATH):
            return self.respond(404, False, "Not found")

        try:
            length = int(self.headers.get('Content-Length', 0))
            obj = json.loads(self.rfile.read(length).decode('UTF-8'))
            deviceId = obj['device_id']
            timestamp = int(obj['timestamp'])
            signature = obj['signature']
        except (ValueError, KeyError, TypeError):
            return self.respond(400, False, "Malformed request")

        if abs(time.time() - timestamp) > self.maxSkew:
            return self.respond(401, False, "Timestamp out of range")
        if not verify(deviceId, timestamp, signature, self.secret):
            log.warning(f"{self.client_address}: bad signature for {deviceId}")
            return self.respond(401, False, "Bad signature")

        try:
            if self.path == BATCH_API_PATH:
                recordId = handleUpload(deviceId, obj['locations'], batch=True)
            else:
                recordId = handleUpload(deviceId, [obj], batch=False)
        except (ValueError, KeyError, TypeError):
            return self.respond(400, False, "Malformed location")
        self.respond(200, True, "OK", recordId)

    def respond(self, code, success, message, recordId=None):
        body = json.dumps({'success': success, 'message': message, 'record_id': recordId}).encode('UTF-8')
        self.send_response(code)
        self.send_header('Content-Type', 'application/json; charset=utf-8')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        log.info(f"{self.client_address[0]}: {format % args}")

def handleUpload(deviceId, locations, batch):
    """Store the locations, returns the ID of the last one."""
    if not isinstance(locations, list):
        raise TypeError("locations must be a list")
    recordId = None
    with db.atomic():
        for item in locations:
            latitude = float(item['latitude'])
            longitude = float(item['longitude'])
            if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
                raise ValueError(f"Coordinates out of range: {latitude}, {longitude}")
            record = Location.create(
                deviceId=deviceId,
                longitude=longitude,
                latitude=latitude,
                locationTime=str(item['location_time']),
                accuracy=item.get('accuracy'),
                networkStatus=item.get('network_status'),
                batch=batch,
            )
            recordId = record.id
    log.info(f"{deviceId}: stored {len(locations)} location(s)")
    return recordId

def makeServer(host, port, secret, maxSkew=MAX_SKEW_S):
    handler = type('Handler', (CollectorHandler,), {'secret': secret, 'maxSkew': maxSkew})
    return ThreadingHTTPServer((host, port), handler)

def __main__(argv=None):
    parser = argparse.ArgumentParser(description='Tracker development collection server.')
    parser.add_argument('-l', '--log', dest='logLevel', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], default='INFO', help='Set the logging level')
    parser.add_argument('--db', dest='db', default='collector.sqlite', help='SQLite file to store locations in')
    parser.add_argument('--host', dest='host', default='0.0.0.0')
    parser.add_argument('--port', dest='port', type=int, default=8000)
    parser.add_argument('--secret', dest='secret', default=DEFAULT_API_SECRET, help='API secret shared with the devices')
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.logLevel))
    openDatabase(args.db)

    server = makeServer(args.host, args.port, args.secret)
    log.info(f"Tracker collector up on {args.host}:{args.port}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()

if __name__ == "__main__":
    __main__()
