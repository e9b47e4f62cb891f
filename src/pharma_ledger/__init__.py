"""Pharma Ledger: drug and shipment provenance service.

Records every drug and shipment state transition in a tamper-evident hash
chain, mirrors that state into per-manufacturer and common ledgers, and keeps
an external relational store reconciled with both.

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# ---------------------------------------------------------------------------
# Package version, read from pyproject.toml via importlib.metadata.
#
# When the package is imported without being installed we fall back to the
# last released version so the application can still start.
# ---------------------------------------------------------------------------
try:
    __version__: str = version("pharma-ledger")
except PackageNotFoundError:
    __version__ = "0.3.0"
