"""In-process store used for local runs and tests.

Same contract as the Supabase client: equality filters, comma-separated
projections, ``update`` addressed by the table's key column.  Rows are
copied in and out so callers never share mutable state with the store.
"""

from __future__ import annotations

import copy
import itertools
import threading
from collections.abc import Mapping
from typing import Any

from pharma_ledger.errors import ValidationError
from pharma_ledger.store.base import Row, id_column


class InMemoryStore:
    def __init__(self, tables: Mapping[str, list[Mapping[str, Any]]] | None = None) -> None:
        self._lock = threading.Lock()
        self._tables: dict[str, list[Row]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self._ids = itertools.count(1)

    def rows(self, table: str) -> list[Row]:
        """All rows of ``table`` (copies), in insertion order."""
        with self._lock:
            return copy.deepcopy(self._tables.get(table, []))

    def select(
        self, table: str, projection: str = "*", filters: Mapping[str, Any] | None = None
    ) -> list[Row]:
        with self._lock:
            matches = [row for row in self._tables.get(table, []) if _matches(row, filters)]
            return [_project(row, projection) for row in matches]

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        stored = copy.deepcopy(dict(row))
        with self._lock:
            if id_column(table) == "id":
                stored.setdefault("id", next(self._ids))
            self._tables.setdefault(table, []).append(stored)
            return copy.deepcopy(stored)

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> Row:
        column = id_column(table)
        with self._lock:
            for row in self._tables.get(table, []):
                if str(row.get(column)) == str(record_id):
                    row.update(copy.deepcopy(dict(patch)))
                    return copy.deepcopy(row)
        return {}

    def delete(self, table: str, filters: Mapping[str, Any]) -> Row:
        if not filters:
            raise ValidationError("refusing to delete without a filter")
        with self._lock:
            rows = self._tables.get(table, [])
            removed = [row for row in rows if _matches(row, filters)]
            self._tables[table] = [row for row in rows if not _matches(row, filters)]
        return copy.deepcopy(removed[0]) if removed else {}


def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    return all(str(row.get(k)) == str(v) for k, v in (filters or {}).items())


def _project(row: Mapping[str, Any], projection: str) -> Row:
    if not projection or projection.strip() == "*":
        return copy.deepcopy(dict(row))
    columns = [c.strip() for c in projection.split(",") if c.strip()]
    return {c: copy.deepcopy(row[c]) for c in columns if c in row}
