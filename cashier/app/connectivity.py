from __future__ import annotations

from typing import Callable

from .jsonlog import json_log


class Connectivity:
    """Online flag pushed in by the platform (OS network events, health probes, tests)."""

    def __init__(self, online: bool = True):
        self._online = bool(online)
        self._reconnect_listeners: list[Callable[[], None]] = []

    @property
    def online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        was_online = self._online
        self._online = bool(online)
        if was_online == self._online:
            return
        json_log("info", "connectivity.changed", online=self._online)
        if not self._online:
            return
        for listener in list(self._reconnect_listeners):
            try:
                listener()
            except Exception as ex:
                json_log("error", "connectivity.listener_failed", error=str(ex))

    def add_reconnect_listener(self, listener: Callable[[], None]) -> None:
        if listener not in self._reconnect_listeners:
            self._reconnect_listeners.append(listener)

    def remove_reconnect_listener(self, listener: Callable[[], None]) -> None:
        try:
            self._reconnect_listeners.remove(listener)
        except ValueError:
            pass
