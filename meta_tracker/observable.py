from __future__ import annotations

from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar("T")

Callback = Callable[[T], Any]


class Observer(Generic[T]):
    def __init__(self, callback: Callback):
        self.callback = callback


class Observable(Generic[T]):
    """Ordered list of callbacks notified with a single value.

    ``on_observer_added`` runs right after a new observer is registered; an
    observable can use it to replay a state the newcomer would have missed.
    """

    def __init__(self, on_observer_added: Optional[Callable[[Observer], None]] = None):
        self._observers: list[Observer] = []
        self._on_observer_added = on_observer_added

    def __len__(self) -> int:
        return len(self._observers)

    def add(self, callback: Callback) -> Observer:
        observer = Observer(callback)
        self._observers.append(observer)
        if self._on_observer_added is not None:
            self._on_observer_added(observer)
        return observer

    def remove(self, observer: Optional[Observer]) -> bool:
        if observer is None or observer not in self._observers:
            return False
        self._observers.remove(observer)
        return True

    def notify_observer(self, observer: Observer, value: T) -> None:
        observer.callback(value)

    def notify_observers(self, value: T) -> None:
        for observer in list(self._observers):
            observer.callback(value)
