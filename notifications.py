# notifications.py
# Fill / rejection / persistence-warning events for display surfaces.
# The core only publishes; how long a toast stays on screen is a display
# concern, exposed here as a TTL filter over the retained events.

import logging
import threading
from collections import deque
from dataclasses import dataclass

from utils import current_timestamp_ms, get_next_id

SUCCESS = "success"
INFO = "info"
WARNING = "warning"
ERROR = "error"

_LOG_LEVELS = {
    SUCCESS: logging.INFO,
    INFO: logging.INFO,
    WARNING: logging.WARNING,
    ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class Notification:
    id: str
    message: str
    severity: str
    created_ms: int


class NotificationCenter:
    """Thread-safe, bounded store of recent notifications plus push listeners."""

    def __init__(self, ttl_ms=4000, max_items=200, clock=None):
        self.ttl_ms = ttl_ms
        self.clock = clock or current_timestamp_ms
        self._items = deque(maxlen=max_items)
        self._listeners = []
        self.lock = threading.Lock()
        self.log = logging.getLogger("exchange")

    def publish(self, message: str, severity: str = INFO) -> Notification:
        if severity not in _LOG_LEVELS:
            raise ValueError(f"unknown severity {severity!r}")
        note = Notification(get_next_id("n-"), message, severity, self.clock())
        with self.lock:
            self._items.append(note)
            listeners = list(self._listeners)
        self.log.log(_LOG_LEVELS[severity], f"[{severity}] {message}")
        for listener in listeners:
            try:
                listener(note)
            except Exception as e:
                # a broken display must not take the publisher down with it
                self.log.error(f"Notification listener failed: {e}")
        return note

    def subscribe(self, listener):
        with self.lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self.lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def active(self, now=None):
        """Notifications still inside their display lifetime, oldest first."""
        now = self.clock() if now is None else now
        with self.lock:
            return [n for n in self._items if now - n.created_ms < self.ttl_ms]

    def history(self):
        with self.lock:
            return list(self._items)
