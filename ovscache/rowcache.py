"""A cache of the rows of one table, hashed by UUID and by unique indexes.

Rows are model objects described by a :class:`~ovscache.dbmodel.DatabaseModel`.
Every row handed out is a copy, so callers may change it freely.
"""

from __future__ import annotations

import operator
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from ovscache.dbmodel import (
    UUID_COLUMN,
    DatabaseModel,
    clone_model,
    get_column,
)

COLUMN_DELIMITER = ","


class CacheInconsistentError(Exception):
    """An operation would leave the cache inconsistent."""

    def __init__(self, details: str = ""):
        self.details = details
        message = "cache inconsistent"
        if details:
            message += ": " + details
        super().__init__(message)


class IndexExistsError(Exception):
    """A row cannot be stored because another row has the same index value."""

    def __init__(self, table: str, value: Any, index: str, new: str, existing: str):
        self.table = table
        self.value = value
        self.index = index
        self.new = new
        self.existing = existing
        super().__init__(
            f"cannot insert {new} in the {table} table. item {existing} has "
            f"identical indexes. index: {index}, value: {value}"
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _includes(a: Any, b: Any) -> bool:
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        return all(k in a and a[k] == v for k, v in b.items())
    if isinstance(a, (list, tuple, set, frozenset)) and isinstance(b, (list, tuple, set, frozenset)):
        return all(item in a for item in b)
    return a == b


def _excludes(a: Any, b: Any) -> bool:
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        return all(not (k in a and a[k] == v) for k, v in b.items())
    if isinstance(a, (list, tuple, set, frozenset)) and isinstance(b, (list, tuple, set, frozenset)):
        return all(item not in a for item in b)
    return a != b


_ORDERINGS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


class ConditionFunction(str, Enum):
    """Comparison functions of a condition."""

    EQUAL = "=="
    NOT_EQUAL = "!="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="
    INCLUDES = "includes"
    EXCLUDES = "excludes"

    def evaluate(self, a: Any, b: Any) -> bool:
        """Apply the function to a column value ``a`` and a condition value ``b``."""
        if self is ConditionFunction.EQUAL:
            return a == b
        if self is ConditionFunction.NOT_EQUAL:
            return a != b
        if self is ConditionFunction.INCLUDES:
            return _includes(a, b)
        if self is ConditionFunction.EXCLUDES:
            return _excludes(a, b)
        if not (_is_number(a) and _is_number(b)):
            raise TypeError(
                f"function {self.value} is only valid for integer and real values"
            )
        return _ORDERINGS[self.value](a, b)


@dataclass(frozen=True)
class Condition:
    """A column, a function and a value to compare the column with."""

    column: str
    function: ConditionFunction
    value: Any


def index_key(*args: str) -> str:
    """Return the key of the index made of the given columns."""
    return COLUMN_DELIMITER.join(args)


def index_columns(key: str) -> list[str]:
    """Return the columns of an index key."""
    return key.split(COLUMN_DELIMITER)


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(item) for item in value)
    if isinstance(value, Mapping):
        return frozenset((k, _freeze(v)) for k, v in value.items())
    return value


def value_from_index(model: Any, key: str) -> Any:
    """Return the hashable value a model has for an index.

    A single-column index yields the column value itself; an index over
    several columns yields a tuple of their values.
    """
    columns = index_columns(key)
    if len(columns) > 1:
        return tuple(_freeze(get_column(model, column)) for column in columns)
    return _freeze(get_column(model, columns[0]))


class RowCache:
    """The rows of one table, hashed by UUID, with unique indexes."""

    def __init__(self, name: str, db_model: DatabaseModel, data_type: type | None):
        table = db_model.table(name)
        if table is None:
            raise KeyError(f"table {name} not found")
        self.name = name
        self._db_model = db_model
        self._data_type = data_type
        self._rows: dict[str, Any] = {}
        self._indexes: dict[str, dict[Any, str]] = {
            index_key(*columns): {} for columns in table.indexes
        }
        self._lock = threading.RLock()

    def row(self, uuid: str) -> Any:
        """Return a copy of the row with a UUID, or None."""
        with self._lock:
            found = self._rows.get(uuid)
            return None if found is None else clone_model(found)

    def row_by_model(self, model: Any) -> Any:
        """Find a row by the UUID of a model, or else by its index values."""
        with self._lock:
            if type(model) is not self._data_type:
                return None
            try:
                uuid = get_column(model, UUID_COLUMN)
            except KeyError:
                return None
            if uuid:
                return self.row(uuid)
            for key, values in self._indexes.items():
                try:
                    value = value_from_index(model, key)
                except KeyError:
                    continue
                if value in values:
                    return self.row(values[value])
            return None

    def create(self, uuid: str, model: Any, check_indexes: bool) -> None:
        """Store a copy of a new row."""
        with self._lock:
            if uuid in self._rows:
                raise CacheInconsistentError(
                    f"cannot create row {uuid} as it already exists"
                )
            if type(model) is not self._data_type:
                expected = getattr(self._data_type, "__name__", repr(self._data_type))
                raise TypeError(
                    f"expected data of type {expected}, but got {type(model).__name__}"
                )
            pending = []
            for key, values in self._indexes.items():
                value = value_from_index(model, key)
                if check_indexes and value in values:
                    raise IndexExistsError(self.name, value, key, uuid, values[value])
                pending.append((key, value))
            for key, value in pending:
                self._indexes[key][value] = uuid
            self._rows[uuid] = clone_model(model)

    def update(self, uuid: str, model: Any, check_indexes: bool) -> None:
        """Replace a stored row, moving its index entries."""
        with self._lock:
            if uuid not in self._rows:
                raise CacheInconsistentError(
                    f"cannot update row {uuid} as it does not exist in the cache"
                )
            old_row = self._rows[uuid]
            added = []
            removed = []
            conflicts = []
            for key, values in self._indexes.items():
                old_value = value_from_index(old_row, key)
                new_value = value_from_index(model, key)
                if old_value == new_value:
                    continue
                conflict = values.get(new_value)
                if check_indexes and conflict is not None and conflict != uuid:
                    conflicts.append(
                        IndexExistsError(self.name, new_value, key, uuid, conflict)
                    )
                added.append((key, new_value))
                removed.append((key, old_value))
            if conflicts:
                raise conflicts[0]
            for key, value in added:
                self._indexes[key][value] = uuid
            for key, value in removed:
                self._indexes[key].pop(value, None)
            self._rows[uuid] = clone_model(model)

    def index_exists(self, model: Any) -> None:
        """Raise IndexExistsError if another row has an index value of the model."""
        with self._lock:
            try:
                uuid = get_column(model, UUID_COLUMN)
            except KeyError:
                return
            for key, values in self._indexes.items():
                try:
                    value = value_from_index(model, key)
                except KeyError:
                    continue
                existing = values.get(value)
                if existing is not None and existing != uuid:
                    raise IndexExistsError(self.name, value, key, uuid, existing)

    def delete(self, uuid: str) -> None:
        """Remove a row and its index entries."""
        with self._lock:
            if uuid not in self._rows:
                raise CacheInconsistentError(
                    f"cannot delete row {uuid} as it does not exist in the cache"
                )
            old_row = self._rows[uuid]
            for key, values in self._indexes.items():
                values.pop(value_from_index(old_row, key), None)
            del self._rows[uuid]

    def rows(self) -> dict[str, Any]:
        """Return copies of all rows, keyed by UUID."""
        with self._lock:
            return {uuid: clone_model(row) for uuid, row in self._rows.items()}

    def rows_by_condition(self, conditions: Iterable[Condition]) -> dict[str, Any]:
        """Return the rows that match any of the conditions, or all rows if none."""
        conditions = list(conditions)
        rows = self.rows()
        if not conditions:
            return rows
        results: dict[str, Any] = {}
        for condition in conditions:
            if condition.column == UUID_COLUMN:
                if not isinstance(condition.value, str):
                    raise TypeError(f"{condition.value!r} is not a uuid")
                for uuid, row in rows.items():
                    if condition.function.evaluate(uuid, condition.value):
                        results[uuid] = row
            else:
                for uuid, row in rows.items():
                    value = get_column(row, condition.column)
                    if condition.function.evaluate(value, condition.value):
                        results[uuid] = row
        return results

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def index(self, *args: str) -> dict[Any, str]:
        """Return a copy of the index over the given columns."""
        key = index_key(*args)
        with self._lock:
            try:
                return dict(self._indexes[key])
            except KeyError:
                raise KeyError(f"{key} is not an index") from None