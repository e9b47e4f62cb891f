"""External relational store interface.

The service treats the store as an opaque, eventually-consistent keyed
document store with four operations and no transactions.  Filters are
equality matches on column values.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

Row = dict[str, Any]

# Key column per table; every other table is keyed by "id".
ID_COLUMNS: dict[str, str] = {
    "drugs": "drug_id",
    "shipments": "shipment_id",
}

# Values of ``blockchain_tx_id`` that mean "not chained yet".
UNCHAINED_TX_IDS = frozenset({"", "pending"})


def id_column(table: str) -> str:
    return ID_COLUMNS.get(table, "id")


def is_unchained(tx_id: Any) -> bool:
    """True when a row's ``blockchain_tx_id`` has not been finalised."""
    return tx_id is None or (isinstance(tx_id, str) and tx_id.strip() in UNCHAINED_TX_IDS)


def record_id(table: str, record: Mapping[str, Any]) -> str | None:
    """Primary key of ``record`` for ``table``, or ``None`` if absent."""
    value = record.get(id_column(table))
    if value is None and id_column(table) != "id":
        value = record.get("id")
    if value is None or value == "":
        return None
    return str(value)


@runtime_checkable
class StoreClient(Protocol):
    def select(
        self, table: str, projection: str = "*", filters: Mapping[str, Any] | None = None
    ) -> list[Row]: ...

    def insert(self, table: str, row: Mapping[str, Any]) -> Row: ...

    def update(self, table: str, record_id: str, patch: Mapping[str, Any]) -> Row: ...

    def delete(self, table: str, filters: Mapping[str, Any]) -> Row: ...
