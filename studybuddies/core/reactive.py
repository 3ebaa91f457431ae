"""Minimal reactive state for the lesson engine.

A StateCell holds one value and tells its listeners when it changes.
A Derived node recomputes from any number of upstream cells whenever ANY
of them changes, so a view over (identity, cache) stays correct no matter
which of the two arrives first.

Listeners run synchronously inside set(). Async consumers use watch(),
which coalesces bursts: a slow consumer only ever sees the newest value.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Generic, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]


class StateCell(Generic[T]):
    """A mutable value with change notification."""

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._version = 0
        self._listeners: list[Listener] = []

    @property
    def value(self) -> T:
        return self._value

    @property
    def version(self) -> int:
        return self._version

    def set(self, value: T) -> None:
        self._value = value
        self._version += 1
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("State listener failed")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def watch(self) -> AsyncIterator[T]:
        """Yield the current value, then each newer one (last value wins)."""
        changed = asyncio.Event()
        unsubscribe = self.subscribe(lambda _value: changed.set())
        seen = -1
        try:
            while True:
                changed.clear()
                if self._version != seen:
                    seen = self._version
                    yield self._value
                    continue
                await changed.wait()
        finally:
            unsubscribe()


class Derived(StateCell[T]):
    """A read-only cell computed from upstream cells.

    Recomputes on every upstream change. Call close() to detach.
    """

    def __init__(self, sources: Sequence[StateCell], compute: Callable[..., T]) -> None:
        self._sources = list(sources)
        self._compute = compute
        super().__init__(self._evaluate())
        self._unsubscribers = [
            source.subscribe(lambda _value: self._recompute()) for source in self._sources
        ]

    def _evaluate(self) -> T:
        return self._compute(*(source.value for source in self._sources))

    def _recompute(self) -> None:
        super().set(self._evaluate())

    def set(self, value: T) -> None:
        raise AttributeError("Derived values are read-only")

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
