"""Shared helpers for route modules."""

from pharma_ledger.api.models import HistoryResponse, OperationResponse, StatusEntry
from pharma_ledger.core.params import OperationResult
from pharma_ledger.ledgers.models import Status


def history_response(entity_id: str, history: list[Status]) -> HistoryResponse:
    return HistoryResponse(
        id=entity_id,
        history=[
            StatusEntry(status=e.status, timestamp=e.timestamp, details=e.details) for e in history
        ],
    )


def operation_response(result: OperationResult) -> OperationResponse:
    return OperationResponse(**result.to_dict())
