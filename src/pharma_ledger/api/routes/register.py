"""
Route registration entry point for the FastAPI application.

Each module exposes ``router(services)`` except ``health``, which needs no
services.
"""

from fastapi import FastAPI

from pharma_ledger.api.routes import chain, drugs, health, shipments, sync
from pharma_ledger.core.services import Services


def register_routes(app: FastAPI, services: Services) -> None:
    """Register all API routes with the FastAPI app."""
    app.include_router(health.router)
    app.include_router(drugs.router(services))
    app.include_router(shipments.router(services))
    app.include_router(chain.router(services))
    app.include_router(sync.router(services))
