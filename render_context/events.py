"""Named-channel observer lists used for render lifecycle notifications."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, DefaultDict, List

Handler = Callable[..., Any]


class EventChannels:
    """Deliver events to subscribers in registration order.

    There is no replay: a handler only sees events emitted after it was
    registered. Exceptions raised by handlers propagate to the emitter.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[tuple[Handler, bool]]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler, *, once: bool = False) -> None:
        if not callable(handler):
            raise TypeError(f"Handler for {event!r} must be callable")
        self._handlers[event].append((handler, once))

    def unsubscribe(self, event: str, handler: Handler) -> None:
        entries = self._handlers.get(event)
        if not entries:
            return
        self._handlers[event] = [entry for entry in entries if entry[0] is not handler]

    def emit(self, event: str, *args: Any) -> int:
        """Call every current subscriber of ``event``; return how many ran."""

        entries = list(self._handlers.get(event, ()))
        if not entries:
            return 0
        if any(once for _, once in entries):
            self._handlers[event] = [entry for entry in self._handlers[event] if not entry[1]]
        for handler, _ in entries:
            handler(*args)
        return len(entries)


__all__ = ["EventChannels", "Handler"]
