from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class LoadTicket:
    generation: int
    tracker: "LoadTracker"

    @property
    def cancelled(self) -> bool:
        return self.tracker.current != self.generation


class LoadTracker:
    """Hands out tickets for successive loads; only the newest may publish."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._generation = 0

    @property
    def current(self) -> int:
        return self._generation

    def begin(self) -> LoadTicket:
        with self._lock:
            self._generation += 1
            return LoadTicket(self._generation, self)


class Loadable(Generic[T]):
    """Holds the latest published value of a load, swapped as a whole."""

    def __init__(self, initial: T) -> None:
        self.tracker = LoadTracker()
        self.value = initial

    def begin(self) -> LoadTicket:
        return self.tracker.begin()

    def publish(self, ticket: LoadTicket, value: T) -> bool:
        """Replace the value unless ``ticket`` was superseded."""
        if ticket.cancelled:
            return False
        self.value = value
        return True
