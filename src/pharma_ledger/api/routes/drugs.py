"""Drug endpoints: create, query, revert, verify and history."""

from typing import Any

from fastapi import APIRouter

from pharma_ledger.api.models import (
    CreateDrugRequest,
    HistoryResponse,
    OperationResponse,
    RevertDrugRequest,
    VerifyResponse,
)
from pharma_ledger.api.routes.utils import history_response, operation_response
from pharma_ledger.core.params import CreateDrugParams, RevertDrugParams
from pharma_ledger.core.services import Services


def router(services: Services) -> APIRouter:
    """Build the drug router."""
    api = APIRouter(prefix="/api/drugs", tags=["drugs"])
    manager = services.manager

    @api.post("", response_model=OperationResponse, status_code=201)
    def create_drug(request: CreateDrugRequest):
        """Register a drug; the response carries its verification hash."""
        result = manager.create_drug(CreateDrugParams(**request.model_dump()))
        return operation_response(result)

    @api.get("")
    def list_drugs(manufacturer_id: str | None = None) -> list[dict[str, Any]]:
        return manager.list_drugs(manufacturer_id)

    @api.get("/{drug_id}")
    def get_drug(drug_id: str) -> dict[str, Any]:
        return manager.get_drug(drug_id)

    @api.post("/{drug_id}/revert", response_model=OperationResponse)
    def revert_drug(drug_id: str, request: RevertDrugRequest):
        result = manager.revert_drug(RevertDrugParams(drug_id=drug_id, **request.model_dump()))
        return operation_response(result)

    @api.get("/{drug_id}/verify", response_model=VerifyResponse)
    def verify_drug(drug_id: str):
        """
        Check the drug against the common ledger and the chain.

        A mismatch is reported as ``verified: false``; an unknown drug is a 404.
        """
        return VerifyResponse(drug_id=drug_id, verified=manager.verify_drug(drug_id))

    @api.get("/{drug_id}/history", response_model=HistoryResponse)
    def drug_history(drug_id: str):
        return history_response(drug_id, manager.get_drug_history(drug_id))

    @api.get("/{drug_id}/status-updates")
    def drug_status_updates(drug_id: str) -> list[dict[str, Any]]:
        """Status-update rows recorded in the external store."""
        return manager.get_drug_status_updates(drug_id)

    return api
