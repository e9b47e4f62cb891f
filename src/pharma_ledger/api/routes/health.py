"""Health and root endpoints.

The version string is read from ``pharma_ledger.__version__``, resolved at
import time via ``importlib.metadata``.
"""

from fastapi import APIRouter

from pharma_ledger import __version__

router = APIRouter()


@router.get("/")
async def root():
    """API identity and current version."""
    return {"message": "Pharma Ledger API", "version": __version__}


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
