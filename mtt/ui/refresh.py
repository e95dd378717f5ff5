from PySide6.QtCore import QObject, QTimer, Signal
from mtt.common.logger import log


# Drives the once-a-second redraw of elapsed times. It never persists anything; it only tells the view when to
# recompute elapsed from each timer's startTime/accumulatedMs, so there's no drift to correct after a pause.
class DisplayRefresher(QObject):

    tick = Signal()

    def __init__(self, has_running, interval_ms=1000, parent=None):
        super().__init__(parent)
        self._has_running = has_running
        self._visible = True
        self._timer = QTimer(self)
        self._timer.setInterval(interval_ms)
        self._timer.timeout.connect(self._on_timeout)

    @property
    def active(self):
        return self._timer.isActive()

    @property
    def visible(self):
        return self._visible

    # Starts ticking if there's something to tick for and the window can be seen.
    def ensure_running(self):
        if self._visible and self._has_running() and not self._timer.isActive():
            self._timer.start()
            log.debug("Display refresh started")

    def stop(self):
        if self._timer.isActive():
            self._timer.stop()
            log.debug("Display refresh stopped")

    # Hidden/minimized windows don't need redraws. Coming back recomputes immediately instead of waiting a tick.
    def set_visible(self, visible):
        if visible == self._visible:
            return
        self._visible = visible
        if not visible:
            self.stop()
            return
        self.tick.emit()
        self.ensure_running()

    def _on_timeout(self):
        self.tick.emit()
        if not self._has_running():
            self.stop()
