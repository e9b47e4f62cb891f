"""
Pydantic models for API requests and responses.

Request models are converted to the manager's parameter dataclasses at the
route boundary; blank-field validation happens there and surfaces as a 400.
"""

from typing import Any

from pydantic import BaseModel, Field

# ============================================================================
# REQUEST MODELS (Client → Server)
# ============================================================================


class CreateDrugRequest(BaseModel):
    """
    Register a new drug.

    Attributes:
        drug_id: Caller-assigned id, unique across all manufacturers
        manufacturer_id: Owning manufacturer
        name: Product name
        description: Optional free text
        location: Where the drug was registered (status-update row)
        user_id: Acting user, recorded as ``updated_by``
    """

    drug_id: str
    manufacturer_id: str
    name: str
    description: str = ""
    location: str = ""
    user_id: str = ""


class CreateShipmentRequest(BaseModel):
    shipment_id: str
    drug_id: str
    manufacturer_id: str
    distributor_id: str
    location: str = ""
    user_id: str = ""


class UpdateShipmentStatusRequest(BaseModel):
    """New shipment status: ``in_transit``, ``delivered`` or ``failed``."""

    status: str
    location: str = ""
    user_id: str = ""


class RevertDrugRequest(BaseModel):
    reason: str
    user_id: str = ""


# ============================================================================
# RESPONSE MODELS (Server → Client)
# ============================================================================


class OperationResponse(BaseModel):
    """
    Result of a state-changing operation.

    Attributes:
        op_id: Outbox intent id
        kind: Operation name
        tx_hash: The operation's own chain transaction
        tx_hashes: All chain transactions, cascades included
        verification_hash: Set for drug creation only
    """

    op_id: str
    kind: str
    tx_hash: str
    tx_hashes: list[str]
    verification_hash: str | None = None


class StatusEntry(BaseModel):
    status: str
    timestamp: str
    details: str | None = None


class HistoryResponse(BaseModel):
    id: str
    history: list[StatusEntry]


class VerifyResponse(BaseModel):
    drug_id: str
    verified: bool


class TransactionVerifyResponse(BaseModel):
    tx_hash: str
    valid: bool


class ChainStatusResponse(BaseModel):
    block_height: int
    last_updated: str | None = None
    transaction_count: int
    last_hash: str


class ConsistencyResponse(BaseModel):
    status: str
    chain: dict[str, Any]
    open_intents: list[dict[str, Any]] = Field(default_factory=list)
    ledger_mismatches: list[str] = Field(default_factory=list)
    recommendation: str | None = None


class ReconcileResponse(BaseModel):
    replayed: list[str]
    failed: list[dict[str, str]]


class SyncStatusResponse(BaseModel):
    is_running: bool
    last_sync: str | None = None
    sync_interval: float
    tables: dict[str, str | None]


class WebhookAck(BaseModel):
    status: str
    message: str
