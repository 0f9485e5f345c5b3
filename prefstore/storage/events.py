"""Change notifications for stored keys."""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

WILDCARD = "*"


@dataclass(frozen=True)
class ChangeEvent:
    """A value changed under a logical key."""

    key: str
    new_value: Any
    old_value: Any
    backend_kind: str
    timestamp: float = field(default_factory=time.time)


Listener = Callable[[ChangeEvent], None | Awaitable[None]]


class ListenerRegistry:
    """Per-key and wildcard listeners for change events."""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}

    def subscribe(self, key: str, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for ``key`` (or ``"*"``).

        Returns a function that removes the registration. Calling it more
        than once is harmless.
        """
        self._listeners.setdefault(key, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key)
            if listeners and listener in listeners:
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[key]

        return unsubscribe

    def has_listeners(self, key: str) -> bool:
        return bool(self._listeners.get(key) or self._listeners.get(WILDCARD))

    def count(self) -> int:
        return sum(len(v) for v in self._listeners.values())

    async def notify(self, event: ChangeEvent) -> None:
        """Deliver ``event`` to key listeners, then wildcard listeners."""
        targets = list(self._listeners.get(event.key, []))
        if event.key != WILDCARD:
            targets.extend(self._listeners.get(WILDCARD, []))

        for listener in targets:
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning(
                    f"Change listener failed for key {event.key!r}: {e}",
                    extra={"key": event.key},
                )

    def clear(self) -> None:
        self._listeners.clear()
