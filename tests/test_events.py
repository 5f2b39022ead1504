import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass

import pytest

from ovscache.events import (
    Event,
    EventHandler,
    EventHandlerFuncs,
    EventProcessor,
    EventType,
)


@dataclass
class Item:
    uuid: str = ""
    foo: str = ""


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@contextmanager
def _running(processor):
    stop = threading.Event()
    thread = threading.Thread(target=processor.run, args=(stop,), daemon=True)
    thread.start()
    try:
        yield
    finally:
        stop.set()
        thread.join(timeout=2)


def test_on_add_without_function_does_nothing():
    calls = []
    handler = EventHandlerFuncs(update_func=lambda *a: calls.append(a))
    handler.on_add("testTable", Item())
    assert calls == []


def test_on_add_calls_function():
    calls = []
    handler = EventHandlerFuncs(add_func=lambda t, m: calls.append((t, m)))
    handler.on_add("testTable", Item())
    assert calls == [("testTable", Item())]


def test_on_update_without_function_does_nothing():
    calls = []
    handler = EventHandlerFuncs(add_func=lambda *a: calls.append(a))
    handler.on_update("testTable", Item(), Item())
    assert calls == []


def test_on_update_calls_function():
    calls = []
    handler = EventHandlerFuncs(update_func=lambda t, o, n: calls.append((t, o, n)))
    handler.on_update("testTable", Item(foo="a"), Item(foo="b"))
    assert calls == [("testTable", Item(foo="a"), Item(foo="b"))]


def test_on_delete_without_function_does_nothing():
    calls = []
    handler = EventHandlerFuncs(add_func=lambda *a: calls.append(a))
    handler.on_delete("testTable", Item())
    assert calls == []


def test_on_delete_calls_function():
    calls = []
    handler = EventHandlerFuncs(delete_func=lambda t, m: calls.append((t, m)))
    handler.on_delete("testTable", Item())
    assert calls == [("testTable", Item())]


def test_event_handler_is_abstract():
    with pytest.raises(TypeError):
        EventHandler()


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        EventProcessor(0)


def test_add_event_drops_when_full_and_keeps_fifo_order():
    processor = EventProcessor(16, logging.getLogger("test.events.fifo"))
    for i in range(17):
        processor.add_event(EventType.ADD, f"bridge{i}", None, Item(uuid="unique", foo="bar"))
    assert len(processor) == 16

    received = []
    processor.add_event_handler(
        EventHandlerFuncs(add_func=lambda t, m: received.append((t, m)))
    )
    with _running(processor):
        assert _wait_for(lambda: len(received) == 16)
    assert [table for table, _ in received] == [f"bridge{i}" for i in range(16)]
    assert all(m == Item(uuid="unique", foo="bar") for _, m in received)
    assert len(processor) == 0


def test_dropping_event_is_logged(caplog):
    logger = logging.getLogger("test.events.drop")
    processor = EventProcessor(1, logger)
    with caplog.at_level(logging.INFO, logger="test.events.drop"):
        processor.add_event(EventType.ADD, "t", None, Item())
        processor.add_event(EventType.ADD, "t", None, Item())
    assert "dropping event because event buffer is full" in caplog.text
    assert len(processor) == 1


def test_add_event_accepts_type_names():
    processor = EventProcessor(4)
    processor.add_event("delete", "t", Item(foo="old"), None)
    received = []
    processor.add_event_handler(
        EventHandlerFuncs(delete_func=lambda t, m: received.append((t, m)))
    )
    with _running(processor):
        assert _wait_for(lambda: len(received) == 1)
    assert received == [("t", Item(foo="old"))]


def test_add_event_rejects_unknown_type():
    processor = EventProcessor(4)
    with pytest.raises(ValueError):
        processor.add_event("rename", "t", None, None)


def test_run_dispatches_each_kind_to_every_handler():
    class Recorder(EventHandler):
        def __init__(self):
            self.calls = []

        def on_add(self, table, model):
            self.calls.append(("add", table, model))

        def on_update(self, table, old, new):
            self.calls.append(("update", table, old, new))

        def on_delete(self, table, model):
            self.calls.append(("delete", table, model))

    first, second = Recorder(), Recorder()
    processor = EventProcessor(8)
    processor.add_event_handler(first)
    processor.add_event_handler(second)
    processor.add_event(EventType.ADD, "t", None, Item(foo="a"))
    processor.add_event(EventType.UPDATE, "t", Item(foo="a"), Item(foo="b"))
    processor.add_event(EventType.DELETE, "t", Item(foo="b"), None)

    with _running(processor):
        assert _wait_for(lambda: len(second.calls) == 3)
    expected = [
        ("add", "t", Item(foo="a")),
        ("update", "t", Item(foo="a"), Item(foo="b")),
        ("delete", "t", Item(foo="b")),
    ]
    assert first.calls == expected
    assert second.calls == expected


def test_event_holds_its_fields():
    event = Event(EventType.UPDATE, "t", Item(foo="a"), Item(foo="b"))
    assert (event.event_type, event.table, event.old.foo, event.new.foo) == (
        EventType.UPDATE,
        "t",
        "a",
        "b",
    )