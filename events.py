"""In-process broker for real-time simulation events."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List

LOGGER = logging.getLogger("simtrainer.events")

TIME_UPDATED = "time-updated"

Subscriber = Callable[[Dict[str, Any]], None]


class TimeUpdateNotifier:
    """Tell connected clients to refresh the remaining time of a simulation."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; the returned callable removes it again."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, simulation_id: str) -> int:
        """Deliver a ``time-updated`` event; returns how many subscribers got it."""
        event = {"event": TIME_UPDATED, "simulation_id": simulation_id}
        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                LOGGER.exception("Subscriber failed for %s on %s", TIME_UPDATED, simulation_id)
                continue
            delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


NOTIFIER = TimeUpdateNotifier()
