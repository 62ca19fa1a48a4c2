"""Environment state: focus/visibility and network connectivity.

There is no browser here, so the embedding application reports changes
(``focus_manager.set_focused(False)`` when its window is hidden,
``online_manager.set_online(False)`` when it loses connectivity). Queries
refetch on regained focus or connectivity, interval refetches skip ticks
while unfocused, and retries pause while offline.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from pgquery.types import Unsubscribe

logger = logging.getLogger(__name__)


class _Subscribable:
    def __init__(self) -> None:
        self._listeners: list[Callable[[bool], None]] = []

    def subscribe(self, listener: Callable[[bool], None]) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def has_listeners(self) -> bool:
        return bool(self._listeners)

    def _emit(self, value: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("%s listener failed", type(self).__name__)


class FocusManager(_Subscribable):
    """Tracks whether the application is visible/focused."""

    def __init__(self, focused: bool = True) -> None:
        super().__init__()
        self._focused = focused

    def is_focused(self) -> bool:
        return self._focused

    def set_focused(self, focused: bool) -> None:
        changed = focused != self._focused
        self._focused = focused
        if changed:
            self._emit(focused)


class OnlineManager(_Subscribable):
    """Tracks whether the network is reachable."""

    def __init__(self, online: bool = True) -> None:
        super().__init__()
        self._online = online

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        changed = online != self._online
        self._online = online
        if changed:
            self._emit(online)


focus_manager = FocusManager()
online_manager = OnlineManager()

__all__ = ["FocusManager", "OnlineManager", "focus_manager", "online_manager"]
