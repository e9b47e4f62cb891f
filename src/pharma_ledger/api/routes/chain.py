"""Hash-chain endpoints: status, transaction lookup, consistency, reconcile."""

from typing import Any

from fastapi import APIRouter

from pharma_ledger.api.models import (
    ChainStatusResponse,
    ConsistencyResponse,
    ReconcileResponse,
    TransactionVerifyResponse,
)
from pharma_ledger.core.services import Services


def router(services: Services) -> APIRouter:
    """Build the chain router."""
    api = APIRouter(prefix="/api/chain", tags=["chain"])
    chain = services.chain
    manager = services.manager

    @api.get("/status", response_model=ChainStatusResponse)
    def chain_status():
        return ChainStatusResponse(**chain.status())

    @api.get("/transactions/{tx_hash}")
    def get_transaction(tx_hash: str) -> dict[str, Any]:
        return chain.get_block(tx_hash).to_dict()

    @api.get("/transactions/{tx_hash}/verify", response_model=TransactionVerifyResponse)
    def verify_transaction(tx_hash: str):
        return TransactionVerifyResponse(tx_hash=tx_hash, valid=chain.verify_transaction(tx_hash))

    @api.get("/consistency", response_model=ConsistencyResponse)
    def consistency():
        """Chain links, unfinished operations and ledger divergence."""
        return ConsistencyResponse(**manager.consistency_check())

    @api.post("/reconcile", response_model=ReconcileResponse)
    def reconcile():
        """Replay unfinished operations from the outbox."""
        return ReconcileResponse(**manager.reconcile())

    return api
