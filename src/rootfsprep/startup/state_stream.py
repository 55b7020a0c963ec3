"""State Stream Module - Observable provisioning state with last-value replay.

Philosophy:
- Single writer: only the state machine emits
- New subscribers immediately receive the current value
- Observers run synchronously on the emitting thread

Public API (the "studs"):
    StateStream: Continuously updated observable of the provisioning state
"""

import threading
from collections.abc import Callable
from typing import Any

Observer = Callable[[Any], None]


class StateStream:
    """Observable value that replays its latest value to new subscribers.

    Example:
        >>> stream = StateStream(WaitingForSelection())
        >>> unsubscribe = stream.subscribe(print)
        WaitingForSelection()
        >>> stream.emit(RetrievingAssetLists())
        RetrievingAssetLists()
        >>> unsubscribe()
    """

    def __init__(self, initial: Any):
        """Initialize stream.

        Args:
            initial: Value replayed to subscribers before the first emission
        """
        self._lock = threading.Lock()
        self._value = initial
        self._observers: list[Observer] = []

    @property
    def value(self) -> Any:
        """Latest emitted value."""
        with self._lock:
            return self._value

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register observer and replay the latest value to it.

        Args:
            observer: Called with every emitted value

        Returns:
            Callable that removes the observer
        """
        with self._lock:
            self._observers.append(observer)
            current = self._value
        observer(current)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def emit(self, value: Any) -> None:
        """Publish value to every observer.

        Args:
            value: New latest value
        """
        with self._lock:
            self._value = value
            observers = list(self._observers)
        for observer in observers:
            observer(value)


__all__ = ["StateStream"]
