"""Manufacturer and common ledgers with file-backed storage."""

from pharma_ledger.ledgers.models import (
    CommonDrugRecord,
    CommonLedger,
    CommonShipmentRecord,
    DrugRecord,
    ManufacturerLedger,
    ShipmentRecord,
    Status,
)
from pharma_ledger.ledgers.storage import LedgerStorage

__all__ = [
    "CommonDrugRecord",
    "CommonLedger",
    "CommonShipmentRecord",
    "DrugRecord",
    "LedgerStorage",
    "ManufacturerLedger",
    "ShipmentRecord",
    "Status",
]
