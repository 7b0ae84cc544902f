import os
import re
import logging
import subprocess

log = logging.getLogger('network')

class NetworkMonitor(object):
    """
    Answers "is there a usable network right now" and "what kind is it" by looking at the routing
    table. A link being up isn't enough (the modem will happily report a connected radio with no
    data bearer), so we only call it reachable when there's a default route out an interface that
    is up. This is advisory: the request can still fail, but it saves us from waiting on a
    timeout when we already know there's no way out.

    Keyword arguments:
    sysfs -- where network interfaces are listed, normally /sys/class/net
    """

    def __init__(self, sysfs="/sys/class/net"):
        self.sysfs = sysfs

    def isReachable(self):
        return len(self.__activeRouteDevices()) > 0

    def networkType(self):
        devices = self.__activeRouteDevices()
        if not devices:
            return "offline"
        kinds = [self.__deviceKind(dev) for dev in devices]
        # If for some reason we have default routes out both, report wifi
        if "wifi" in kinds:
            return "wifi"
        if "cellular" in kinds:
            return "cellular"
        return "unknown"

    def defaultRoutes(self):
        return subprocess.check_output(['ip', 'route', 'show', 'default']).decode('UTF-8')

    def __activeRouteDevices(self):
        try:
            routes = self.defaultRoutes()
        except (subprocess.CalledProcessError, OSError):
            log.warning("Could not read routing table, assuming offline")
            return []
        devices = []
        for line in routes.splitlines():
            match = re.search(r"\bdev (\S+)", line)
            if match and match.group(1) not in devices and self.__isUp(match.group(1)):
                devices.append(match.group(1))
        return devices

    def __isUp(self, dev):
        # USB CDC modems usually report 'unknown' here even when they're passing traffic
        try:
            with open(os.path.join(self.sysfs, dev, "operstate")) as f:
                return f.read().strip() in ("up", "unknown")
        except OSError:
            return False

    def __deviceKind(self, dev):
        if os.path.exists(os.path.join(self.sysfs, dev, "wireless")) or \
                os.path.exists(os.path.join(self.sysfs, dev, "phy80211")):
            return "wifi"
        if dev.startswith("wwan") or dev.startswith("ppp"):
            return "cellular"
        return "other"
