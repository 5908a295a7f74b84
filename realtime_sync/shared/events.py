"""
MODULE OVERVIEW:
The host visibility notifier.

WHAT IS HAPPENING HERE:
In a browser this is `document.visibilityState` plus the `visibilitychange`
event; on a desktop or mobile shell it is the app's foreground/background hook.
Whatever the host is, it reports "now visible" or "now hidden" each time it
notices something, which is level-triggered: nothing stops it from reporting
"visible" twice in a row. Listeners are plain callables and run to completion
one after another on the event loop thread, in registration order.
"""
from enum import Enum
from typing import Callable, List

from loguru import logger


class VisibilityState(str, Enum):
    VISIBLE = "visible"
    HIDDEN = "hidden"


VisibilityListener = Callable[[VisibilityState], None]


class VisibilityMonitor:
    """
    Holds the current visibility state and fans each report out to listeners.
    """
    def __init__(self, initial_state: VisibilityState = VisibilityState.VISIBLE):
        self._state = VisibilityState(initial_state)
        self._listeners: List[VisibilityListener] = []

    @property
    def state(self) -> VisibilityState:
        return self._state

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: VisibilityListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: VisibilityListener) -> None:
        # Removing a listener that is not registered is a no-op, like removeEventListener
        if listener in self._listeners:
            self._listeners.remove(listener)

    def report(self, state: VisibilityState | str) -> None:
        """Record `state` and notify every listener, even if it did not change."""
        self._state = VisibilityState(state)
        logger.debug(f"visibility={self._state.value} listeners={len(self._listeners)}")

        # Snapshot so a listener can deregister itself mid-dispatch
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"Error in visibility listener during dispatch: {e}")
