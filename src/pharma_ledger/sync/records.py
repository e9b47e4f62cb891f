"""Chaining of store rows shared by the sync engine and webhook ingest.

Both paths serialise work on one record through a shared
:class:`~pharma_ledger.locks.KeyedLocks` keyed by ``(table, record_id)`` and
re-read the row's ``blockchain_tx_id`` inside the lock, so a row is chained
at most once even when a periodic cycle and a webhook event race.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pharma_ledger.chain.transactions import RecordSync, Transaction, create_transaction
from pharma_ledger.errors import ValidationError
from pharma_ledger.store.base import StoreClient, id_column, record_id

# Fields that change when a row is chained and must not feed its hash.
_VOLATILE_FIELDS = frozenset({"blockchain_tx_id"})


def require_record_id(table: str, record: Mapping[str, Any]) -> str:
    rid = record_id(table, record)
    if rid is None:
        raise ValidationError(f"no {id_column(table)} in {table} record")
    return rid


def record_transaction(
    table: str, rid: str, record: Mapping[str, Any], timestamp: str
) -> Transaction:
    """Deterministic transaction for one version of a store row.

    The same row content with the same ``timestamp`` always yields the same
    hash.
    """
    body = {k: v for k, v in record.items() if k not in _VOLATILE_FIELDS}
    return create_transaction(RecordSync(table=table, record_id=rid, record=body), timestamp=timestamp)


def current_tx_id(
    store: StoreClient, table: str, rid: str, fallback: Mapping[str, Any]
) -> tuple[Any, bool]:
    """Return ``(blockchain_tx_id, row_exists)`` as the store has it now.

    Falls back to the value in ``fallback`` when the row is not in the store.
    """
    rows = store.select(table, "blockchain_tx_id", {id_column(table): rid})
    if rows:
        return rows[0].get("blockchain_tx_id"), True
    return fallback.get("blockchain_tx_id"), False
