"""
Device Reachability - Explicit state machine for device-backed destinations.

    UNKNOWN ──► DISCOVERING ──► FOUND ──► CONNECTED ◄──► DISCONNECTED
                  ▲   ▲   └───► NOT_FOUND                      │
                  │   └────────────┘                           │
                  └────────────────────────────────────────────┘

Only CONNECTED permits operations. Leaving CONNECTED mid-sync makes the
destination's remaining operations abort; nothing already applied is undone.
"""

import logging
import threading
from enum import Enum, auto
from typing import Callable

from .errors import InvalidTransition

logger = logging.getLogger(__name__)


class DeviceState(Enum):
    UNKNOWN = auto()
    DISCOVERING = auto()
    FOUND = auto()
    NOT_FOUND = auto()
    CONNECTED = auto()
    DISCONNECTED = auto()


TRANSITIONS: dict[DeviceState, frozenset[DeviceState]] = {
    DeviceState.UNKNOWN: frozenset({DeviceState.DISCOVERING}),
    DeviceState.DISCOVERING: frozenset({DeviceState.FOUND, DeviceState.NOT_FOUND}),
    DeviceState.FOUND: frozenset({DeviceState.CONNECTED}),
    DeviceState.NOT_FOUND: frozenset({DeviceState.DISCOVERING}),
    DeviceState.CONNECTED: frozenset({DeviceState.DISCONNECTED}),
    DeviceState.DISCONNECTED: frozenset({DeviceState.CONNECTED, DeviceState.DISCOVERING}),
}

Listener = Callable[[DeviceState, DeviceState], None]


class Reachability:
    """
    Thread-safe holder of a device's DeviceState.

    Usage:
        reach = Reachability()
        reach.subscribe(lambda old, new: print(old, "->", new))
        reach.transition(DeviceState.DISCOVERING)
    """

    def __init__(self, name: str = "device"):
        self.name = name
        self._state = DeviceState.UNKNOWN
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> DeviceState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is DeviceState.CONNECTED

    def can_transition(self, new_state: DeviceState) -> bool:
        return new_state in TRANSITIONS[self._state]

    def transition(self, new_state: DeviceState) -> None:
        """Move to new_state or raise InvalidTransition."""
        with self._lock:
            old = self._state
            if new_state not in TRANSITIONS[old]:
                raise InvalidTransition(old, new_state)
            self._state = new_state
            listeners = list(self._listeners)

        logger.debug(f"{self.name}: {old.name} -> {new_state.name}")
        for listener in listeners:
            listener(old, new_state)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def __repr__(self) -> str:
        return f"Reachability({self.name!r}, {self._state.name})"
