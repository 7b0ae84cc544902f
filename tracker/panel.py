import threading
import time
import logging
from gpiozero import LED, Button

from tracker.report import DELIVERED, QUEUED_OFFLINE, SKIPPED

log = logging.getLogger('panel')

# Presses shorter than this ask for a manual upload. Longer ones are ignored for now.
SHORT_PRESS_S = 1

def ledModeForStatus(status):
    """
    What the LED should do after an upload: a single flash when it went through, steady on while
    there's anything waiting in the offline cache, blinking when the last send failed even though
    we seemed to have a network or the sample couldn't be saved at all. Samples that didn't
    trigger an upload leave it alone (None).
    """
    if status.status == SKIPPED:
        return None
    if status.status == DELIVERED:
        return 'on' if status.cachedCount > 0 else 'once'
    if status.status == QUEUED_OFFLINE:
        return 'on'
    return 'blink'

class PanelThread(threading.Thread):
    def __init__(self, q, ledPin=18, buttonPin=4):
        threading.Thread.__init__(self, daemon=True)
        self.q = q
        self.live = True
        self.ledmode = 'off'
        self.ledPin = ledPin
        self.buttonPin = buttonPin
        self.downTime = None

    def run(self):
        # LED expected to be on GPIO 18.
        led = LED(self.ledPin)
        # Button expected to be on GPIO 4 and to be active low (e.g. connected to GND)
        button = Button(self.buttonPin)

        button.when_pressed = self.startPress
        button.when_released = self.endPress
        log.debug("Panel thread startup complete")

        while self.live:
            self.step(led)
            time.sleep(1)

    def step(self, led):
        if self.ledmode == 'blink':
            led.toggle()
        if self.ledmode == 'on':
            led.on()
        if self.ledmode == 'off':
            led.off()
        if self.ledmode == 'once':
            led.on()
            self.ledmode = "oncedone"
        elif self.ledmode == 'oncedone':
            led.off()
            self.ledmode = "off"

    def stop(self):
        self.live = False

    def setLed(self, mode):
        self.ledmode = mode

    def showStatus(self, status):
        mode = ledModeForStatus(status)
        if mode is not None:
            self.setLed(mode)

    def startPress(self):
        self.downTime = time.time()

    def endPress(self):
        if self.downTime is None:
            return
        downtime = time.time() - self.downTime
        self.downTime = None
        # Sending currently unnecessary "type" because I might add a second button in the future.
        self.q.put(['PanelEvent', {'type': 'CtlButton', 'time': downtime}])
