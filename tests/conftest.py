"""
Shared pytest fixtures for the Pharma Ledger test suite.

This module provides fixtures that are automatically available to all test files:
- An isolated ``LedgerConfig`` whose data directory lives under ``tmp_path``
- Fully wired services over an in-memory store
- A FastAPI TestClient with background workers disabled
- Small factories for creating drugs and shipments through the manager

Every fixture is function-scoped so no test can observe another test's
chain, ledgers or store rows.
"""

from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from pharma_ledger.api.server import create_app
from pharma_ledger.config import (
    LedgerConfig,
    StorageSettings,
    StoreSettings,
    SyncSettings,
    WebhookSettings,
)
from pharma_ledger.core.params import CreateDrugParams, CreateShipmentParams, OperationResult
from pharma_ledger.core.services import Services, build_services
from pharma_ledger.store.memory import InMemoryStore
from tests.constants import DISTRIBUTOR_ID, MANUFACTURER_ID, TEST_WEBHOOK_SECRET

# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Root of all files written by the service during one test."""
    return tmp_path / "data"


@pytest.fixture
def ledger_config(data_dir: Path) -> LedgerConfig:
    """
    Configuration isolated to ``tmp_path``.

    Uses the in-memory store, disables the periodic sync loop and removes
    webhook retry backoff so retry tests never sleep.
    """
    return LedgerConfig(
        storage=StorageSettings(data_dir=str(data_dir)),
        store=StoreSettings(backend="memory"),
        sync=SyncSettings(enabled=False, interval_seconds=60.0),
        webhook=WebhookSettings(
            secret=TEST_WEBHOOK_SECRET,
            max_retries=3,
            backoff_seconds=0.0,
            workers=2,
            queue_size=10,
        ),
    )


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def services(ledger_config: LedgerConfig, store: InMemoryStore) -> Generator[Services, None, None]:
    """
    Wired services over the in-memory store.

    Yields:
        Services bundle; webhook workers are stopped on teardown if a test
        started them.
    """
    bundle = build_services(ledger_config, store=store)
    yield bundle
    if bundle.sync.is_running:
        bundle.sync.stop()
    if bundle.webhooks.is_running:
        bundle.webhooks.stop(drain=False, timeout=2)


@pytest.fixture
def manager(services: Services):
    return services.manager


@pytest.fixture
def client(services: Services) -> TestClient:
    """
    Create a FastAPI TestClient bound to the test services.

    Background workers are not started; webhook tests drain the queue
    explicitly via ``services.webhooks.drain()``.
    """
    return TestClient(create_app(services, start_background=False))


# ============================================================================
# DATA FACTORIES
# ============================================================================


@pytest.fixture
def make_drug(manager) -> Callable[..., OperationResult]:
    """Factory creating a drug through the manager."""

    def _make(drug_id: str = "DRUG-001", manufacturer_id: str = MANUFACTURER_ID, **kwargs):
        params = CreateDrugParams(
            drug_id=drug_id,
            manufacturer_id=manufacturer_id,
            name=kwargs.pop("name", "Amoxicillin 500mg"),
            **kwargs,
        )
        return manager.create_drug(params)

    return _make


@pytest.fixture
def make_shipment(manager) -> Callable[..., OperationResult]:
    """Factory creating a shipment for an existing drug."""

    def _make(
        shipment_id: str = "SHIP-001",
        drug_id: str = "DRUG-001",
        manufacturer_id: str = MANUFACTURER_ID,
        distributor_id: str = DISTRIBUTOR_ID,
        **kwargs,
    ):
        params = CreateShipmentParams(
            shipment_id=shipment_id,
            drug_id=drug_id,
            manufacturer_id=manufacturer_id,
            distributor_id=distributor_id,
            **kwargs,
        )
        return manager.create_shipment(params)

    return _make
