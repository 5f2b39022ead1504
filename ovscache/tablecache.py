"""A cache of all tables of a database, fed by update notifications.

Rows arrive in the OVSDB wire form: atoms as plain JSON values, UUIDs as
``["uuid", id]`` or ``["named-uuid", id]``, sets as ``["set", [...]]`` or a
single bare atom, and maps as ``["map", [[key, value], ...]]``.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Mapping

from ovscache.dbmodel import (
    UUID_COLUMN,
    ColumnSchema,
    DatabaseModel,
    get_column,
    set_column,
)
from ovscache.events import EventHandler, EventProcessor, EventType
from ovscache.rowcache import CacheInconsistentError, RowCache

BUFFER_SIZE = 65536


@dataclass
class RowUpdate:
    """An update notification for one row: its old and new contents."""

    old: dict[str, Any] | None = None
    new: dict[str, Any] | None = None


@dataclass
class RowUpdate2:
    """An update2 notification for one row; exactly one field is expected."""

    initial: dict[str, Any] | None = None
    insert: dict[str, Any] | None = None
    modify: dict[str, Any] | None = None
    delete: dict[str, Any] | None = None


def _is_pair(value: Any, tag: str | tuple[str, ...]) -> bool:
    tags = (tag,) if isinstance(tag, str) else tag
    return isinstance(value, (list, tuple)) and len(value) == 2 and value[0] in tags


def _atom(atomic_type: str, value: Any) -> Any:
    if atomic_type == "uuid":
        if isinstance(value, str):
            return value
        if _is_pair(value, ("uuid", "named-uuid")) and isinstance(value[1], str):
            return value[1]
    elif atomic_type == "string":
        if isinstance(value, str):
            return value
    elif atomic_type == "boolean":
        if isinstance(value, bool):
            return value
    elif atomic_type == "integer":
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    elif atomic_type == "real":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    raise ValueError(f"expected an OVSDB {atomic_type}, got {value!r}")


def _set_elements(key_type: str, value: Any) -> list[Any]:
    if _is_pair(value, "set"):
        if not isinstance(value[1], (list, tuple)):
            raise ValueError(f"invalid OVSDB set {value!r}")
        return [_atom(key_type, element) for element in value[1]]
    return [_atom(key_type, value)]


def _map_items(column: ColumnSchema, value: Any) -> dict[Any, Any]:
    if isinstance(value, Mapping):
        pairs = list(value.items())
    elif _is_pair(value, "map") and isinstance(value[1], (list, tuple)):
        pairs = list(value[1])
    else:
        raise ValueError(f"invalid OVSDB map {value!r}")
    result = {}
    for pair in pairs:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValueError(f"invalid OVSDB map entry {pair!r}")
        result[_atom(column.key_type, pair[0])] = _atom(column.value_type, pair[1])
    return result


def _ovs_to_native(column: ColumnSchema, value: Any) -> Any:
    if column.type == "map":
        return _map_items(column, value)
    if column.type == "set":
        elements = _set_elements(column.key_type, value)
        if column.max == 1:
            if len(elements) > 1:
                raise ValueError(
                    f"column {column.name} holds at most one value, got {len(elements)}"
                )
            return elements[0] if elements else None
        return elements
    return _atom(column.key_type, value)


class TableCache:
    """Row caches for every table of a schema, plus event dispatching."""

    def __init__(
        self,
        db_model: DatabaseModel,
        data: Mapping[str, Mapping[str, Any]] | None = None,
        logger: logging.Logger | None = None,
    ):
        if logger is None:
            logger = logging.getLogger("ovscache.cache")
        else:
            logger = logger.getChild("cache")
        self._logger = logger
        self.db_model = db_model
        self._lock = threading.RLock()
        self._errors: queue.Queue[Exception] = queue.Queue()
        self._events = EventProcessor(BUFFER_SIZE, logger)
        self._cache: dict[str, RowCache] = {
            name: RowCache(name, db_model, db_model.models.get(name))
            for name in db_model.tables
        }
        for table, rows in (data or {}).items():
            if table not in db_model.tables:
                raise ValueError(f"table {table} is not in schema")
            for uuid, row in rows.items():
                self._cache[table].create(uuid, row, True)

    def table(self, name: str) -> RowCache | None:
        """Return the cache of a table, or None."""
        with self._lock:
            return self._cache.get(name)

    def tables(self) -> list[str]:
        """Return the names of the cached tables."""
        with self._lock:
            return list(self._cache)

    def update(self, context: Any, table_updates: Mapping[str, Mapping[str, RowUpdate]]) -> None:
        """Handle an update notification."""
        if not table_updates:
            return
        try:
            self.populate(table_updates)
        except Exception as err:
            self._logger.error("during cache populate: %s", err)
            self._errors.put(CacheInconsistentError(str(err)))
            raise

    def update2(self, context: Any, table_updates: Mapping[str, Mapping[str, RowUpdate2]]) -> None:
        """Handle an update2 notification."""
        if not table_updates:
            return
        try:
            self.populate2(table_updates)
        except Exception as err:
            self._logger.error("during cache populate2: %s", err)
            self._errors.put(CacheInconsistentError(str(err)))
            raise

    def locked(self, args: Any) -> None:
        """Handle a locked notification; the cache only logs it."""
        self._logger.debug("locked notification: %r", args)

    def stolen(self, args: Any) -> None:
        """Handle a stolen notification; the cache only logs it."""
        self._logger.debug("stolen notification: %r", args)

    def echo(self, args: Any) -> None:
        """Handle an echo; the cache only logs it."""
        self._logger.debug("echo: %r", args)

    def disconnected(self) -> None:
        """Handle a disconnection; the cache only logs it."""
        self._logger.debug("disconnected")

    def populate(self, table_updates: Mapping[str, Mapping[str, RowUpdate]]) -> None:
        """Apply update notifications and queue the resulting events."""
        with self._lock:
            for table in self.db_model.models:
                updates = table_updates.get(table)
                if updates is None:
                    continue
                row_cache = self._cache[table]
                for uuid, row in updates.items():
                    self._logger.debug("processing update of %s in %s", uuid, table)
                    if row.new is not None:
                        new_model = self.create_model(table, row.new, uuid)
                        existing = row_cache.row(uuid)
                        if existing is not None:
                            if new_model != existing:
                                self._logger.debug("updating row %r to %r", existing, new_model)
                                row_cache.update(uuid, new_model, False)
                                self._events.add_event(EventType.UPDATE, table, existing, new_model)
                            continue
                        self._logger.debug("creating row %r", new_model)
                        row_cache.create(uuid, new_model, False)
                        self._events.add_event(EventType.ADD, table, None, new_model)
                    else:
                        old_model = self.create_model(table, row.old or {}, uuid)
                        self._logger.debug("deleting row %r", old_model)
                        row_cache.delete(uuid)
                        self._events.add_event(EventType.DELETE, table, old_model, None)

    def populate2(self, table_updates: Mapping[str, Mapping[str, RowUpdate2]]) -> None:
        """Apply update2 notifications and queue the resulting events."""
        with self._lock:
            for table in self.db_model.models:
                updates = table_updates.get(table)
                if updates is None:
                    continue
                row_cache = self._cache[table]
                for uuid, row in updates.items():
                    self._logger.debug("processing update2 of %s in %s", uuid, table)
                    inserted = row.initial if row.initial is not None else row.insert
                    if inserted is not None:
                        model = self.create_model(table, inserted, uuid)
                        self._logger.debug("creating row %r", model)
                        row_cache.create(uuid, model, False)
                        self._events.add_event(EventType.ADD, table, None, model)
                    elif row.modify is not None:
                        existing = row_cache.row(uuid)
                        if existing is None:
                            raise CacheInconsistentError(f"row with uuid {uuid} does not exist")
                        modified = row_cache.row(uuid)
                        try:
                            self.apply_modifications(table, modified, row.modify)
                        except (KeyError, ValueError, TypeError) as err:
                            raise ValueError(f"unable to apply row modifications: {err}") from err
                        if modified != existing:
                            self._logger.debug("updating row %r to %r", existing, modified)
                            row_cache.update(uuid, modified, False)
                            self._events.add_event(EventType.UPDATE, table, existing, modified)
                    else:
                        model = row_cache.row(uuid)
                        if model is None:
                            raise CacheInconsistentError(f"row with uuid {uuid} does not exist")
                        self._logger.debug("deleting row %r", model)
                        row_cache.delete(uuid)
                        self._events.add_event(EventType.DELETE, table, model, None)

    def purge(self, db_model: DatabaseModel) -> None:
        """Drop all rows and start again from the given database model."""
        with self._lock:
            self.db_model = db_model
            for name in db_model.tables:
                self._cache[name] = RowCache(name, db_model, db_model.models.get(name))

    def add_event_handler(self, handler: EventHandler) -> None:
        """Register a handler for cache events."""
        self._events.add_event_handler(handler)

    def run(self, stop_event: threading.Event) -> None:
        """Dispatch cache events until ``stop_event`` is set."""
        self._events.run(stop_event)

    def errors(self) -> queue.Queue:
        """Return the queue that receives errors raised while populating."""
        return self._errors

    def create_model(self, table_name: str, row: Mapping[str, Any], uuid: str = "") -> Any:
        """Build a model of a table from a row in wire form."""
        table = self.db_model.table(table_name)
        if table is None:
            raise KeyError(f"table {table_name} not found")
        model = self.db_model.new_model(table_name)
        for column, value in (row or {}).items():
            if column == UUID_COLUMN:
                set_column(model, UUID_COLUMN, _atom("uuid", value))
                continue
            schema = table.columns.get(column)
            if schema is None:
                continue
            try:
                get_column(model, column)
            except KeyError:
                continue
            set_column(model, column, _ovs_to_native(schema, value))
        if uuid:
            set_column(model, UUID_COLUMN, uuid)
        return model

    def apply_modifications(self, table_name: str, base: Any, update: Mapping[str, Any]) -> None:
        """Apply the difference carried by an update2 ``modify`` to a model in place."""
        table = self.db_model.table(table_name)
        if table is None:
            raise KeyError(f"table {table_name} not found")
        for column, raw in update.items():
            if column == UUID_COLUMN:
                continue
            schema = table.columns.get(column)
            if schema is None:
                raise KeyError(f"column {column} not found in table {table_name}")
            current = get_column(base, column)

            if schema.type == "map":
                merged = dict(current or {})
                for key, value in _map_items(schema, raw).items():
                    if key in merged and merged[key] == value:
                        del merged[key]
                    else:
                        merged[key] = value
                set_column(base, column, merged or None)
            elif schema.type == "set" and schema.max == 1:
                elements = _set_elements(schema.key_type, raw)
                if len(elements) <= 1:
                    set_column(base, column, elements[0] if elements else None)
                elif len(elements) != 2:
                    raise ValueError(
                        f"expected a set with 2 elements for update: {dict(update)!r}"
                    )
                else:
                    changed = [element for element in elements if element != current]
                    if changed:
                        set_column(base, column, changed[-1])
            elif schema.type == "set":
                values = list(current or [])
                for element in _set_elements(schema.key_type, raw):
                    if element in values:
                        values.remove(element)
                    else:
                        values.append(element)
                set_column(base, column, values)
            else:
                set_column(base, column, _atom(schema.key_type, raw))