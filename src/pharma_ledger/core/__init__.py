"""Ledger Manager, state machines, outbox and service wiring."""

from pharma_ledger.core.manager import LedgerManager, compute_verification_hash
from pharma_ledger.core.outbox import Intent, Outbox
from pharma_ledger.core.params import (
    CreateDrugParams,
    CreateShipmentParams,
    OperationResult,
    RevertDrugParams,
    UpdateShipmentStatusParams,
)
from pharma_ledger.core.states import DrugStatus, ShipmentStatus

__all__ = [
    "CreateDrugParams",
    "CreateShipmentParams",
    "DrugStatus",
    "Intent",
    "LedgerManager",
    "OperationResult",
    "Outbox",
    "RevertDrugParams",
    "ShipmentStatus",
    "UpdateShipmentStatusParams",
    "compute_verification_hash",
]
