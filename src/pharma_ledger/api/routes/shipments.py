"""Shipment endpoints and per-manufacturer ledger views."""

from typing import Any

from fastapi import APIRouter

from pharma_ledger.api.models import (
    CreateShipmentRequest,
    HistoryResponse,
    OperationResponse,
    UpdateShipmentStatusRequest,
)
from pharma_ledger.api.routes.utils import history_response, operation_response
from pharma_ledger.core.params import CreateShipmentParams, UpdateShipmentStatusParams
from pharma_ledger.core.services import Services


def router(services: Services) -> APIRouter:
    """Build the shipment and manufacturer router."""
    api = APIRouter(prefix="/api", tags=["shipments"])
    manager = services.manager

    @api.post("/shipments", response_model=OperationResponse, status_code=201)
    def create_shipment(request: CreateShipmentRequest):
        """Create a shipment; the drug moves to ``in_transit``."""
        result = manager.create_shipment(CreateShipmentParams(**request.model_dump()))
        return operation_response(result)

    @api.get("/shipments")
    def list_shipments(
        manufacturer_id: str | None = None, distributor_id: str | None = None
    ) -> list[dict[str, Any]]:
        return manager.list_shipments(manufacturer_id, distributor_id)

    @api.get("/shipments/{shipment_id}")
    def get_shipment(shipment_id: str) -> dict[str, Any]:
        return manager.get_shipment(shipment_id)

    @api.put("/shipments/{shipment_id}/status", response_model=OperationResponse)
    def update_shipment_status(shipment_id: str, request: UpdateShipmentStatusRequest):
        """Change shipment status; ``delivered`` also delivers the drug."""
        result = manager.update_shipment_status(
            UpdateShipmentStatusParams(shipment_id=shipment_id, **request.model_dump())
        )
        return operation_response(result)

    @api.get("/shipments/{shipment_id}/history", response_model=HistoryResponse)
    def shipment_history(shipment_id: str):
        return history_response(shipment_id, manager.get_shipment_history(shipment_id))

    @api.get("/shipments/{shipment_id}/status-updates")
    def shipment_status_updates(shipment_id: str) -> list[dict[str, Any]]:
        return manager.get_shipment_status_updates(shipment_id)

    @api.get("/manufacturers")
    def list_manufacturers() -> list[str]:
        return services.ledgers.list_manufacturers()

    @api.get("/manufacturers/{manufacturer_id}/ledger")
    def manufacturer_ledger(manufacturer_id: str) -> dict[str, Any]:
        return manager.get_manufacturer_ledger(manufacturer_id).to_dict()

    return api
