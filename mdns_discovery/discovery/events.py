"""
Event Emitter

Callback registry used by the discovery engine to publish ``peer``,
``query`` and ``response`` events.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class _Listener:
    callback: Callable[..., None]
    once: bool = False


class Subscription:
    """Handle returned by ``add_listener``; cancelling it removes the listener."""

    def __init__(self, emitter: "EventEmitter", event: str, listener: _Listener):
        self._emitter = emitter
        self._listener = listener
        self.event = event

    @property
    def active(self) -> bool:
        return self._emitter._has(self.event, self._listener)

    def cancel(self) -> None:
        """Remove the listener. Cancelling twice is harmless."""
        self._emitter._discard(self.event, self._listener)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()


class EventEmitter:
    """Synchronous event emitter; listeners run in registration order."""

    def __init__(self, guard: Optional[Callable[[str], bool]] = None):
        """
        Initialize the emitter.

        Args:
            guard: Checked before every emission; when it returns False for
                an event name nothing is delivered.
        """
        self._listeners: Dict[str, List[_Listener]] = {}
        self._guard = guard

    def add_listener(self, event: str, callback: Callable[..., None], once: bool = False) -> Subscription:
        """
        Register an event listener.

        Args:
            event: The event name.
            callback: Called with the event arguments.
            once: Remove the listener after its first call.

        Returns:
            A subscription that can cancel the listener.
        """
        if not callable(callback):
            raise TypeError("callback must be callable")

        listener = _Listener(callback, once)
        self._listeners.setdefault(event, []).append(listener)
        return Subscription(self, event, listener)

    on = add_listener

    def remove_listener(self, event: str, callback: Callable[..., None]) -> None:
        """
        Unregister every registration of ``callback`` for ``event``.

        Args:
            event: The event name.
            callback: The callback function.
        """
        listeners = self._listeners.get(event)
        if not listeners:
            return
        self._listeners[event] = [entry for entry in listeners if entry.callback != callback]

    off = remove_listener

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        """
        Deliver an event to its listeners.

        A raising listener is logged and does not stop delivery to the others.

        Returns:
            True if at least one listener was called.
        """
        if self._guard is not None and not self._guard(event):
            return False

        listeners = list(self._listeners.get(event, []))
        if not listeners:
            return False

        for listener in listeners:
            if listener.once:
                self._discard(event, listener)
            try:
                listener.callback(*args)
            except Exception as e:
                logger.error(f"Error in '{event}' listener {listener.callback!r}: {e}", exc_info=True)

            # A listener may have stopped the engine
            if self._guard is not None and not self._guard(event):
                break

        return True

    def _has(self, event: str, listener: _Listener) -> bool:
        return any(entry is listener for entry in self._listeners.get(event, []))

    def _discard(self, event: str, listener: _Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners:
            self._listeners[event] = [entry for entry in listeners if entry is not listener]
