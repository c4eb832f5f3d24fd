"""Push-style event channels from the backend to its frontend."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List

from .logging_utils import get_logger

PROGRESS = "progress"
DOWNLOAD_COMPLETE = "download-complete"
DOWNLOAD_ERROR = "download-error"
CUT_PROGRESS = "cut-progress"
CUT_COMPLETE = "cut-complete"
CUT_ERROR = "cut-error"
SETUP_PROGRESS = "setup-progress"

CHANNELS = (
    PROGRESS,
    DOWNLOAD_COMPLETE,
    DOWNLOAD_ERROR,
    CUT_PROGRESS,
    CUT_COMPLETE,
    CUT_ERROR,
    SETUP_PROGRESS,
)

Listener = Callable[[str, Any], None]


def to_payload(payload: Any) -> Any:
    to_dict = getattr(payload, "to_dict", None)
    return to_dict() if callable(to_dict) else payload


class EventBus:
    """Fan events out to subscribers.

    A listener subscribed to ``"*"`` receives every channel. Listeners are
    called on the emitting thread.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self._lock = threading.Lock()
        self._log = get_logger()

    def subscribe(self, channel: str, listener: Listener) -> None:
        with self._lock:
            self._listeners.setdefault(channel, []).append(listener)

    def unsubscribe(self, channel: str, listener: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(channel, [])
            if listener in listeners:
                listeners.remove(listener)

    def emit(self, channel: str, payload: Any = None) -> None:
        data = to_payload(payload)
        with self._lock:
            targets = list(self._listeners.get(channel, [])) + list(self._listeners.get("*", []))
        for listener in targets:
            try:
                listener(channel, data)
            except Exception as e:
                self._log.error("Listener for '%s' failed: %s", channel, e)


__all__ = [
    "EventBus",
    "CHANNELS",
    "to_payload",
    "PROGRESS",
    "DOWNLOAD_COMPLETE",
    "DOWNLOAD_ERROR",
    "CUT_PROGRESS",
    "CUT_COMPLETE",
    "CUT_ERROR",
    "SETUP_PROGRESS",
]
