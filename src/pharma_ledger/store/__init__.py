"""External store clients."""

from pharma_ledger.store.base import (
    ID_COLUMNS,
    Row,
    StoreClient,
    id_column,
    is_unchained,
    record_id,
)
from pharma_ledger.store.memory import InMemoryStore
from pharma_ledger.store.supabase import SupabaseClient

__all__ = [
    "ID_COLUMNS",
    "InMemoryStore",
    "Row",
    "StoreClient",
    "SupabaseClient",
    "id_column",
    "is_unchained",
    "record_id",
]
