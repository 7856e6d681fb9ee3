"""Event dispatcher used for entity lifecycle hooks."""

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class Dispatcher:
    """Synchronous event dispatcher.

    Listeners are called in priority order (highest first, then registration
    order). A listener returning ``False`` stops propagation.
    """

    def __init__(self):
        self._listeners: dict[str, list[tuple[int, int, Callable]]] = {}
        self._counter = 0

    def listen(self, events: str | list[str], listener: Callable, priority: int = 0) -> None:
        """Register a listener for one or more events."""
        if isinstance(events, str):
            events = [events]

        for event in events:
            self._counter += 1
            self._listeners.setdefault(event, []).append((priority, self._counter, listener))

    def has_listeners(self, event: str) -> bool:
        return bool(self._listeners.get(event))

    def get_listeners(self, event: str) -> list[Callable]:
        entries = sorted(self._listeners.get(event, []), key=lambda entry: (-entry[0], entry[1]))
        return [listener for _, _, listener in entries]

    def dispatch(self, event: str, payload: Any = None, halt: bool = False) -> Any:
        """Call every listener for ``event``.

        Args:
            event: Event name
            payload: Single argument or tuple of arguments passed to listeners
            halt: Return the first non-None response instead of collecting all

        Returns:
            List of responses, or the first non-None response when halting
        """
        if payload is None:
            args: tuple = ()
        elif isinstance(payload, tuple):
            args = payload
        else:
            args = (payload,)

        responses = []
        for listener in self.get_listeners(event):
            response = listener(*args)

            if response is not None and halt:
                logger.debug(f"Event '{event}' halted by {getattr(listener, '__name__', listener)!r}")
                return response

            if response is False:
                break

            responses.append(response)

        return None if halt else responses

    def until(self, event: str, payload: Any = None) -> Any:
        """Dispatch until the first listener returns a non-None value."""
        return self.dispatch(event, payload, halt=True)

    def forget(self, event: str) -> None:
        self._listeners.pop(event, None)

    def flush(self) -> None:
        self._listeners.clear()
