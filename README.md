# ovscache

An in-memory cache of OVSDB rows. Rows are held as Python dataclass
instances, and `update` and `update2` notifications keep them current.

## Modules

- `ovscache.dbmodel`: `DatabaseModel` parses a schema in its JSON form into
  `TableSchema` and `ColumnSchema` objects. It pairs each table with a
  dataclass that holds its rows. A field named `uuid` maps to the `_uuid`
  column. A field with `metadata={"column": name}` maps to that column. Any
  other field maps to the column of the same name. `get_column`, `set_column`
  and `clone_model` read, write and deep-copy models by column.
- `ovscache.rowcache`: `RowCache` holds the rows of one table by UUID and
  keeps every unique index the schema declares, single-column or
  multi-column.
  - `create`, `update` and `delete` raise `CacheInconsistentError` when the
    row is missing, or when it already exists on `create`.
  - They raise `IndexExistsError` when an index check fails.
  - `create` raises `TypeError` for a model of the wrong class.
  - `row_by_model` finds a row from the UUID of a partly filled model. If
    that UUID is empty, it looks the model up by its index values.
  - `index(*columns)` returns a copy of one index.
  - `rows_by_condition` returns the rows that match any of the given
    `Condition`s. `ConditionFunction` holds the functions a condition can
    use: `==`, `!=`, `<`, `<=`, `>`, `>=`, `includes` and `excludes`.
- `ovscache.events`: `EventProcessor` is a bounded queue of `Event`s
  (`EventType.ADD`, `UPDATE`, `DELETE`). It hands each event to every
  registered `EventHandler`. `EventHandlerFuncs` builds a handler from
  optional callables.
- `ovscache.tablecache`: `TableCache` holds one `RowCache` for each table in
  the schema.
  - `populate` applies `RowUpdate` notifications and `populate2` applies
    `RowUpdate2` notifications. Both take rows in OVSDB wire form.
  - `apply_modifications` works out the set, map and optional-value
    differences carried by an `update2` `modify`.
  - `update` and `update2` wrap `populate` and `populate2`. When one of
    those fails, they put a `CacheInconsistentError` on the `errors()` queue
    and then re-raise the error.
  - `purge` drops all rows.

Every row the cache hands out is a copy. Changing it leaves the cache
unchanged.

## Install

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
import threading
from dataclasses import dataclass

from ovscache.dbmodel import DatabaseModel
from ovscache.events import EventHandlerFuncs
from ovscache.tablecache import RowUpdate, RowUpdate2, TableCache


@dataclass
class Bridge:
    uuid: str = ""
    name: str = ""
    external_ids: dict | None = None


schema = {
    "name": "Open_vSwitch",
    "tables": {
        "Bridge": {
            "indexes": [["name"]],
            "columns": {
                "name": {"type": "string"},
                "external_ids": {
                    "type": {"key": "string", "value": "string",
                             "min": 0, "max": "unlimited"},
                },
            },
        },
    },
}

cache = TableCache(DatabaseModel(schema, {"Bridge": Bridge}), None, None)
cache.add_event_handler(EventHandlerFuncs(
    add_func=lambda table, model: print("added", table, model),
))

stop = threading.Event()
threading.Thread(target=cache.run, args=(stop,), daemon=True).start()

cache.populate({
    "Bridge": {
        "br0-uuid": RowUpdate(new={"name": "br0",
                                   "external_ids": ["map", [["k", "v"]]]}),
    },
})

bridges = cache.table("Bridge")
bridges.row("br0-uuid")                # Bridge(uuid="br0-uuid", name="br0", ...)
bridges.row_by_model(Bridge(name="br0"))  # found through the "name" index

# An update2 modify that repeats an existing map entry removes it.
cache.populate2({
    "Bridge": {"br0-uuid": RowUpdate2(modify={"external_ids": ["map", [["k", "v"]]]})},
})

stop.set()
```

Events are handed to handlers only while `run` is executing, in the thread
that calls it. The queue holds 65536 events. Once it is full, new events are
logged and dropped.

## What it does not do

The package holds and updates the cache, and nothing else:

- It opens no connection to a database server.
- It sends no monitor requests or transactions.
- It does not fetch schemas.

Notifications, and the schema as a JSON-style mapping, must be supplied by
the caller.