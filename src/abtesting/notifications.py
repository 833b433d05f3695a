"""
Engine notifications.

Listeners subscribe explicitly to an engine and are called synchronously with
(name, payload) after each state change. Notifications are for observability
only: a listener that raises is logged and ignored.
"""

import logging
import threading
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

CREATED = "created"
STARTED = "started"
PAUSED = "paused"
COMPLETED = "completed"
ASSIGNED = "assigned"
EVENT_TRACKED = "event:tracked"

NotificationListener = Callable[[str, Dict[str, Any]], None]


class Notifier:
    """Fan-out of notifications to subscribed listeners."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: List[NotificationListener] = []

    def subscribe(self, listener: NotificationListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: NotificationListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def notify(self, name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(name, payload)
            except Exception:
                logger.exception(f"Notification listener failed for {name}")


class LoggingListener:
    """Logs lifecycle changes and assignments."""

    def __init__(self, log: logging.Logger = logger, level: int = logging.INFO):
        self.log = log
        self.level = level

    def __call__(self, name: str, payload: Dict[str, Any]) -> None:
        if name == EVENT_TRACKED:
            # high volume; keep at debug
            self.log.debug(f"A/B event tracked: {payload}")
            return
        self.log.log(self.level, f"A/B test {name}: {payload}")


class RecordingListener:
    """Keeps every notification in memory (dashboards, tests)."""

    def __init__(self):
        self.notifications: List[tuple] = []

    def __call__(self, name: str, payload: Dict[str, Any]) -> None:
        self.notifications.append((name, payload))

    def names(self) -> List[str]:
        return [n for n, _ in self.notifications]
