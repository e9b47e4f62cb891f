"""Hash-chain ledger: hashed transactions and the append-only block log."""

from pharma_ledger.chain.ledger import Block, ChainLedger, check_blocks
from pharma_ledger.chain.transactions import (
    PAYLOAD_TYPES,
    DrugCreate,
    DrugRevert,
    DrugUpdate,
    RecordSync,
    ShipmentCreate,
    ShipmentUpdate,
    Transaction,
    TxPayload,
    compute_hash,
    create_transaction,
    parse_payload,
    set_previous_hash,
    validate,
)

__all__ = [
    "PAYLOAD_TYPES",
    "Block",
    "ChainLedger",
    "DrugCreate",
    "DrugRevert",
    "DrugUpdate",
    "RecordSync",
    "ShipmentCreate",
    "ShipmentUpdate",
    "Transaction",
    "TxPayload",
    "check_blocks",
    "compute_hash",
    "create_transaction",
    "parse_payload",
    "set_previous_hash",
    "validate",
]
