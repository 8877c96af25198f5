"""
Event Surface

A small listener registry used by UploadSession to report to its caller.

Events:
- start:     ()
- progress:  (ProgressEvent)
- completed: (UploadResult)
- error:     (Exception)
- cancel:    ()
- debug:     (dict)

A misbehaving listener is logged and skipped; it never breaks the upload.
"""

import logging
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)

EVENTS = ('start', 'progress', 'completed', 'error', 'cancel', 'debug')

Listener = Callable[..., Any]


class EventEmitter:
    """Register listeners per event name and dispatch to them in order."""

    def __init__(self):
        # event -> [(listener, once)]
        self._listeners: Dict[str, List[Tuple[Listener, bool]]] = {
            name: [] for name in EVENTS
        }

    def _check(self, event: str):
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")

    def on(self, event: str, listener: Listener) -> Listener:
        """Register a listener; returns it so it can be used as a decorator."""
        self._check(event)
        self._listeners[event].append((listener, False))
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        """Register a listener that is removed after its first call."""
        self._check(event)
        self._listeners[event].append((listener, True))
        return listener

    def off(self, event: str, listener: Listener):
        """Remove every registration of a listener."""
        self._check(event)
        self._listeners[event] = [
            entry for entry in self._listeners[event] if entry[0] is not listener
        ]

    def listener_count(self, event: str) -> int:
        self._check(event)
        return len(self._listeners[event])

    def emit(self, event: str, *args) -> bool:
        """
        Call every listener of an event.

        Returns:
            True if at least one listener was registered
        """
        self._check(event)
        entries = self._listeners[event]
        if not entries:
            return False

        # Drop one-shot listeners before calling, so re-entrant emits skip them
        self._listeners[event] = [entry for entry in entries if not entry[1]]

        for listener, _ in entries:
            try:
                listener(*args)
            except Exception as e:
                logger.error(f"Listener error on '{event}': {e}")
        return True
