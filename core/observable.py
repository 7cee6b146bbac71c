"""
core/observable.py -- Publish/subscribe subject with replay-last-value.

Session state is broadcast on three Observables (auth state, current user,
selected building). A subscriber that joins late immediately receives the
latest value, so a screen built after login still sees "authenticated"
without racing the login call.

Callbacks run synchronously on the emitting thread, outside the lock, in
subscription order. A callback that raises is logged and does not stop the
remaining subscribers or the state transition that emitted.

Usage:
    state = Observable(AuthState.UNKNOWN)
    sub = state.subscribe(print)     # prints AuthState.UNKNOWN right away
    state.emit(AuthState.AUTHENTICATED)
    sub.unsubscribe()
"""

import logging
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger("automatedlife.observable")

_UNSET = object()


class Subscription:
    def __init__(self, owner: "Observable", callback: Callable) -> None:
        self._owner = owner
        self._callback = callback

    def unsubscribe(self) -> None:
        self._owner._remove(self._callback)


class Observable(Generic[T]):
    def __init__(self, initial: T = _UNSET) -> None:  # type: ignore[assignment]
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[T], None]] = []
        self._value = initial
        self._closed = False

    @property
    def value(self) -> T:
        """Latest emitted value. Raises LookupError if nothing was emitted yet."""
        if self._value is _UNSET:
            raise LookupError("Observable has no value yet")
        return self._value  # type: ignore[return-value]

    @property
    def has_value(self) -> bool:
        return self._value is not _UNSET

    def subscribe(self, callback: Callable[[T], None], replay: bool = True) -> Subscription:
        with self._lock:
            if self._closed:
                raise RuntimeError("Cannot subscribe to a closed Observable")
            self._subscribers.append(callback)
            current = self._value
        if replay and current is not _UNSET:
            self._notify(callback, current)  # type: ignore[arg-type]
        return Subscription(self, callback)

    def emit(self, value: T) -> None:
        with self._lock:
            if self._closed:
                return
            self._value = value
            subscribers = list(self._subscribers)
        for callback in subscribers:
            self._notify(callback, value)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._subscribers.clear()

    def _remove(self, callback: Callable) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @staticmethod
    def _notify(callback: Callable[[T], None], value: T) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception("Observable subscriber %r raised", callback)
