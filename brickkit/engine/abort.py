"""Cooperative cancellation for pipeline runs."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from brickkit.errors import CancelError


class AbortSignal:
    def __init__(self) -> None:
        self._aborted = False
        self._reason: Any = None
        self._listeners: list[Callable[[Any], None]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Any:
        return self._reason

    def add_listener(self, callback: Callable[[Any], None]) -> None:
        if self._aborted:
            callback(self._reason)
            return
        self._listeners.append(callback)

    def throw_if_aborted(self) -> None:
        if not self._aborted:
            return
        if isinstance(self._reason, BaseException):
            raise CancelError(str(self._reason) or "Run cancelled") from self._reason
        raise CancelError(str(self._reason) if self._reason else "Run cancelled")

    def _abort(self, reason: Any) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        for callback in listeners:
            callback(reason)


class AbortController:
    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: Any = None) -> None:
        self.signal._abort(reason)
