"""Cache events and the processor that hands them to registered handlers."""

from __future__ import annotations

import abc
import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

_DEFAULT_LOGGER = logging.getLogger("ovscache.cache")

# How long the dispatch loop waits for an event before checking for a stop.
_POLL_INTERVAL = 0.05


class EventType(str, Enum):
    """Kinds of change made to the cache."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Event:
    """A single change to a row of a table."""

    event_type: EventType
    table: str
    old: Any = None
    new: Any = None


class EventHandler(abc.ABC):
    """Receives notice of rows being added, updated and deleted."""

    @abc.abstractmethod
    def on_add(self, table: str, model: Any) -> None:
        """Called after a row was added."""

    @abc.abstractmethod
    def on_update(self, table: str, old: Any, new: Any) -> None:
        """Called after a row was changed."""

    @abc.abstractmethod
    def on_delete(self, table: str, model: Any) -> None:
        """Called after a row was removed."""


@dataclass
class EventHandlerFuncs(EventHandler):
    """An event handler built from optional callables."""

    add_func: Callable[[str, Any], None] | None = None
    update_func: Callable[[str, Any, Any], None] | None = None
    delete_func: Callable[[str, Any], None] | None = None

    def on_add(self, table: str, model: Any) -> None:
        if self.add_func is not None:
            self.add_func(table, model)

    def on_update(self, table: str, old: Any, new: Any) -> None:
        if self.update_func is not None:
            self.update_func(table, old, new)

    def on_delete(self, table: str, model: Any) -> None:
        if self.delete_func is not None:
            self.delete_func(table, model)


class EventProcessor:
    """A bounded queue of events dispatched to handlers by :meth:`run`.

    Handlers must be quick: while one runs, others wait, and events that
    arrive while the queue is full are dropped.
    """

    def __init__(self, capacity: int, logger: logging.Logger | None = None):
        if capacity < 1:
            raise ValueError(f"event buffer capacity must be positive, not {capacity}")
        self._events: queue.Queue[Event] = queue.Queue(maxsize=capacity)
        self._handlers: list[EventHandler] = []
        self._handlers_lock = threading.Lock()
        self._logger = logger if logger is not None else _DEFAULT_LOGGER

    def add_event_handler(self, handler: EventHandler) -> None:
        """Register a handler to receive every following event."""
        with self._handlers_lock:
            self._handlers.append(handler)

    def add_event(self, event_type: EventType | str, table: str, old: Any, new: Any) -> None:
        """Queue an event, dropping it if the queue is full."""
        event = Event(EventType(event_type), table, old, new)
        try:
            self._events.put_nowait(event)
        except queue.Full:
            self._logger.info("dropping event because event buffer is full")

    def run(self, stop_event: threading.Event) -> None:
        """Dispatch queued events until ``stop_event`` is set."""
        while not stop_event.is_set():
            try:
                event = self._events.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            self._dispatch(event)

    def _dispatch(self, event: Event) -> None:
        with self._handlers_lock:
            for handler in self._handlers:
                if event.event_type is EventType.ADD:
                    handler.on_add(event.table, event.new)
                elif event.event_type is EventType.UPDATE:
                    handler.on_update(event.table, event.old, event.new)
                else:
                    handler.on_delete(event.table, event.old)

    def __len__(self) -> int:
        return self._events.qsize()