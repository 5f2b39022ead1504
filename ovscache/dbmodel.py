"""Database schema and model descriptions used by the cache.

A database model pairs an OVSDB schema (in its JSON form) with the Python
classes that hold rows of each table. Row classes are dataclasses whose
fields map to columns: a field named ``uuid`` maps to ``_uuid``, a field
with ``metadata={"column": name}`` maps to ``name``, and any other field
maps to the column of the same name.
"""

from __future__ import annotations

import copy
import dataclasses
import functools
from dataclasses import dataclass, field
from typing import Any, Mapping

UUID_COLUMN = "_uuid"
ATOMIC_TYPES = frozenset({"integer", "real", "boolean", "string", "uuid"})


@dataclass(frozen=True)
class ColumnSchema:
    """Type of one column.

    ``type`` is an atomic type name, ``"set"`` or ``"map"``. ``max`` is
    ``None`` when the column is unlimited.
    """

    name: str
    type: str
    key_type: str
    value_type: str | None = None
    min: int = 1
    max: int | None = 1
    mutable: bool = True


@dataclass
class TableSchema:
    """Columns and unique indexes of one table."""

    name: str
    columns: dict[str, ColumnSchema] = field(default_factory=dict)
    indexes: list[list[str]] = field(default_factory=list)
    is_root: bool = False


def _atomic(spec: Any, where: str) -> str:
    if isinstance(spec, Mapping):
        spec = spec.get("type")
    if spec not in ATOMIC_TYPES:
        raise ValueError(f"column {where}: unknown atomic type {spec!r}")
    return spec


def _parse_column(name: str, spec: Mapping[str, Any]) -> ColumnSchema:
    type_spec = spec.get("type")
    mutable = bool(spec.get("mutable", True))
    if type_spec is None:
        raise ValueError(f"column {name}: missing type")
    if isinstance(type_spec, str):
        key = _atomic(type_spec, name)
        return ColumnSchema(name, key, key, mutable=mutable)
    if not isinstance(type_spec, Mapping) or "key" not in type_spec:
        raise ValueError(f"column {name}: invalid type {type_spec!r}")

    key = _atomic(type_spec["key"], name)
    value = _atomic(type_spec["value"], name) if "value" in type_spec else None
    minimum = type_spec.get("min", 1)
    maximum = type_spec.get("max", 1)
    if maximum == "unlimited":
        maximum = None
    if minimum not in (0, 1):
        raise ValueError(f"column {name}: min must be 0 or 1, not {minimum!r}")
    if maximum is not None and (not isinstance(maximum, int) or maximum < 1):
        raise ValueError(f"column {name}: invalid max {maximum!r}")

    if value is not None:
        kind = "map"
    elif minimum == 1 and maximum == 1:
        kind = key
    else:
        kind = "set"
    return ColumnSchema(name, kind, key, value, minimum, maximum, mutable)


def _parse_table(name: str, spec: Mapping[str, Any]) -> TableSchema:
    columns = spec.get("columns")
    if not isinstance(columns, Mapping):
        raise ValueError(f"table {name}: missing columns")
    return TableSchema(
        name=name,
        columns={col: _parse_column(col, cspec) for col, cspec in columns.items()},
        indexes=[list(index) for index in spec.get("indexes", [])],
        is_root=bool(spec.get("isRoot", False)),
    )


def _column_name(f: dataclasses.Field) -> str:
    if "column" in f.metadata:
        return f.metadata["column"]
    return UUID_COLUMN if f.name == "uuid" else f.name


@functools.lru_cache(maxsize=None)
def _column_map(cls: type) -> dict[str, str]:
    return {_column_name(f): f.name for f in dataclasses.fields(cls)}


def _field_for(model: Any, column: str) -> str:
    mapping = _column_map(type(model))
    try:
        return mapping[column]
    except KeyError:
        raise KeyError(
            f"column {column} not found in model {type(model).__name__}"
        ) from None


def get_column(model: Any, column: str) -> Any:
    """Return the value a model holds for a column."""
    return getattr(model, _field_for(model, column))


def set_column(model: Any, column: str, value: Any) -> None:
    """Store a value in the field of a model that maps to a column."""
    setattr(model, _field_for(model, column), value)


def clone_model(model: Any) -> Any:
    """Return a deep copy of a model."""
    return copy.deepcopy(model)


class DatabaseModel:
    """A parsed schema together with the row classes of its tables."""

    def __init__(self, schema: Mapping[str, Any], models: Mapping[str, type]):
        tables = schema.get("tables")
        if not isinstance(tables, Mapping):
            raise ValueError("schema has no tables")
        self.name: str = schema.get("name", "")
        self.tables: dict[str, TableSchema] = {
            name: _parse_table(name, spec) for name, spec in tables.items()
        }
        self.models: dict[str, type] = dict(models)

        errors = []
        for table, cls in self.models.items():
            if table not in self.tables:
                errors.append(f"table {table} is not in schema")
                continue
            if not (isinstance(cls, type) and dataclasses.is_dataclass(cls)):
                errors.append(f"model for table {table} is not a dataclass")
                continue
            columns = _column_map(cls)
            if UUID_COLUMN not in columns:
                errors.append(f"model for table {table} has no {UUID_COLUMN} column")
            for column in columns:
                if column != UUID_COLUMN and column not in self.tables[table].columns:
                    errors.append(f"column {column} is not in table {table}")
        if errors:
            raise ValueError("; ".join(errors))

    def table(self, name: str) -> TableSchema | None:
        """Return the schema of a table, or None if there is no such table."""
        return self.tables.get(name)

    def model_class(self, table: str) -> type:
        """Return the row class registered for a table."""
        try:
            return self.models[table]
        except KeyError:
            raise KeyError(f"table {table} has no model") from None

    def new_model(self, table: str) -> Any:
        """Return an empty row of a table."""
        return self.model_class(table)()