"""API route modules."""

from pharma_ledger.api.routes.register import register_routes

__all__ = ["register_routes"]
