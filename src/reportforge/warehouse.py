"""In-memory warehouse of per-object records.

the engine never writes to this - it only reads records and the version
counter. anything that changes data bumps the version, and every derived cache
keys off (inputs, version) rather than object identity, since records can be
patched in place.
"""

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

from reportforge.models.schema import SchemaCatalog
from reportforge.values import decode_value

logger = logging.getLogger(__name__)

# engine functions accept either a Warehouse or a bare {object: [records]} mapping
RecordStore = Mapping[str, list[dict[str, Any]]]


class Warehouse:
    """Per-object ordered record lists plus a version counter."""

    def __init__(
        self,
        data: Mapping[str, Iterable[Mapping[str, Any]]] | None = None,
        schema: SchemaCatalog | None = None,
    ) -> None:
        """Create a warehouse.

        Args:
            data: Mapping of object name to records.
            schema: When given, records are decoded against declared field types.
        """
        self.schema = schema
        self.version = 0
        self._data: dict[str, list[dict[str, Any]]] = {}
        for object_name, records in (data or {}).items():
            self._data[object_name] = [self._decode(object_name, r) for r in records]

    @property
    def data(self) -> Mapping[str, list[dict[str, Any]]]:
        """Read-only view of the underlying data."""
        return MappingProxyType(self._data)

    def objects(self) -> list[str]:
        return list(self._data)

    def records(self, object_name: str) -> list[dict[str, Any]]:
        """Records for an object, in insertion order. Empty list when absent."""
        return self._data.get(object_name, [])

    def __contains__(self, object_name: object) -> bool:
        return object_name in self._data

    def __len__(self) -> int:
        return sum(len(records) for records in self._data.values())

    # --- mutation - every one of these bumps the version ---

    def replace(self, object_name: str, records: Iterable[Mapping[str, Any]]) -> None:
        self._data[object_name] = [self._decode(object_name, r) for r in records]
        self._bump(f"replace {object_name}")

    def append(self, object_name: str, records: Iterable[Mapping[str, Any]]) -> None:
        rows = self._data.setdefault(object_name, [])
        rows.extend(self._decode(object_name, r) for r in records)
        self._bump(f"append {object_name}")

    def patch(self, object_name: str, index: int, changes: Mapping[str, Any]) -> None:
        """Update fields on one record in place."""
        rows = self._data.get(object_name)
        if rows is None:
            raise KeyError(f"Unknown object: {object_name}")
        rows[index].update(self._decode(object_name, changes))
        self._bump(f"patch {object_name}[{index}]")

    def with_records(self, object_name: str, records: list[dict[str, Any]]) -> "Warehouse":
        """Derived snapshot with one object's records substituted.

        used by grouped evaluation. records are assumed already decoded, and
        the snapshot shares this warehouse's version since it's only ever
        built from it.
        """
        derived = Warehouse(schema=self.schema)
        derived._data = dict(self._data)
        derived._data[object_name] = list(records)
        derived.version = self.version
        return derived

    def _bump(self, reason: str) -> None:
        self.version += 1
        logger.debug("warehouse version %d (%s)", self.version, reason)

    def _decode(self, object_name: str, record: Mapping[str, Any]) -> dict[str, Any]:
        """Decode a record against the schema. unknown fields pass through as-is."""
        row = dict(record)
        if self.schema is None:
            return row
        obj = self.schema.find_object(object_name)
        if obj is None:
            return row
        for field in obj.fields:
            if field.name in row:
                row[field.name] = decode_value(row[field.name], field.type)
        return row


def records_for(store: Warehouse | RecordStore | None, object_name: str) -> list[dict[str, Any]]:
    """Get an object's records from either a Warehouse or a plain mapping."""
    if store is None:
        return []
    if isinstance(store, Warehouse):
        return store.records(object_name)
    rows = store.get(object_name)
    if rows is None or isinstance(rows, (str, bytes, Mapping)):
        return []
    return list(rows)

