"""Shared read-model container for deposit and intent views."""

import logging
from collections import defaultdict
from types import MappingProxyType
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class StateStore:
    """Per-account cache of read models.

    Snapshots are immutable; writes go through ``set`` or through a tracked
    request (``begin_request`` then ``apply``) so a response to a superseded
    request is dropped instead of overwriting fresher data.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._state: dict[str, Any] = dict(initial or {})
        self._snapshot = MappingProxyType(dict(self._state))
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._generations: dict[str, int] = defaultdict(int)

    def get_state(self) -> Mapping[str, Any]:
        return self._snapshot

    def get(self, key: str, default: Any = None) -> Any:
        return self._snapshot.get(key, default)

    def subscribe(self, key: str, listener: Listener) -> Callable[[], None]:
        """Call ``listener(value)`` whenever ``key`` changes. Returns an unsubscribe function."""
        self._listeners[key].append(listener)

        def unsubscribe():
            if listener in self._listeners[key]:
                self._listeners[key].remove(listener)

        return unsubscribe

    def set(self, key: str, value: Any):
        if key in self._state and self._state[key] == value:
            return
        self._state[key] = value
        self._snapshot = MappingProxyType(dict(self._state))
        for listener in list(self._listeners[key]):
            listener(value)

    def begin_request(self, key: str) -> int:
        """Start a tracked read for ``key``; only the newest generation may write."""
        self._generations[key] += 1
        return self._generations[key]

    def is_current(self, key: str, generation: int) -> bool:
        return self._generations[key] == generation

    def apply(self, key: str, value: Any, generation: int) -> bool:
        """Write ``value`` if ``generation`` is still the newest request for ``key``."""
        if not self.is_current(key, generation):
            logger.debug(f"Dropping stale {key} response (generation {generation})")
            return False
        self.set(key, value)
        return True
