"""Sync control endpoints and the store webhook receiver."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Header, HTTPException

from pharma_ledger.api.models import SyncStatusResponse, WebhookAck
from pharma_ledger.core.services import Services

logger = logging.getLogger(__name__)


def router(services: Services) -> APIRouter:
    """Build the sync and webhook router."""
    api = APIRouter(prefix="/api", tags=["sync"])
    engine = services.sync
    webhooks = services.webhooks

    @api.get("/sync/status", response_model=SyncStatusResponse)
    def sync_status():
        return SyncStatusResponse(**engine.status())

    @api.post("/sync/force")
    def force_sync(table: str | None = None) -> list[dict[str, Any]]:
        """Run a sync now; a table already syncing is reported as skipped."""
        return [status.to_dict() for status in engine.force_sync(table)]

    @api.get("/sync/log")
    def sync_log(limit: int = 50) -> list[dict[str, Any]]:
        return engine.history(limit)

    @api.post("/webhooks/supabase", response_model=WebhookAck)
    def supabase_webhook(
        payload: dict[str, Any] = Body(...),
        x_webhook_signature: str | None = Header(default=None),
    ):
        """
        Accept a store change notification.

        The event is queued for the worker pool; a full queue answers 503.
        """
        if not webhooks.verify_signature(x_webhook_signature):
            logger.warning("Rejected webhook with invalid signature")
            raise HTTPException(status_code=401, detail="Invalid signature")
        event = webhooks.submit(payload)
        return WebhookAck(
            status="success",
            message=f"Webhook {event.type} on {event.table} received and processing started",
        )

    return api
