"""
Component Test Layer Configuration

Services are wired with build_inventory_services over in-memory
collaborators, a fake clock and a mocked event bus.

Structure:
    tests/component/
    ├── inventory/   Ledger, holds, discovery, tracking, checkout, events
    └── mocks/       Mock implementations

Usage:
    pytest tests/component -v
    pytest tests/component/inventory -v -k ledger
"""
import os
import sys
from typing import Callable, Optional

import pytest
import pytest_asyncio

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["NATS_ENABLED"] = "false"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from core.config import InventoryConfig
from microservices.inventory_service.factory import InventoryServices, build_inventory_services
from microservices.inventory_service.memory_repository import (
    InMemoryCatalog,
    InMemoryCertificateSource,
)
from microservices.inventory_service.models import Product, StockRecord
from tests.component.mocks import ControlledStockStore, MockEventBus, MockPostgresClient
from tests.fixtures import FakeClock, make_product


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "component: marks tests as component tests"
    )


# =============================================================================
# Mocks
# =============================================================================

@pytest.fixture
def mock_db() -> MockPostgresClient:
    """Mock PostgreSQL client"""
    return MockPostgresClient()


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    """Mock NATS event bus"""
    return MockEventBus()


@pytest.fixture
def store() -> ControlledStockStore:
    """In-memory stock store with injectable latency"""
    return ControlledStockStore()


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog()


@pytest.fixture
def certificates() -> InMemoryCertificateSource:
    return InMemoryCertificateSource()


@pytest.fixture
def inventory_config() -> InventoryConfig:
    """Defaults with a short store timeout so timeout tests stay fast"""
    return InventoryConfig(store_timeout_seconds=0.2, catalog_timeout_seconds=0.2)


# =============================================================================
# Services
# =============================================================================

@pytest.fixture
def services(
    inventory_config: InventoryConfig,
    store: ControlledStockStore,
    catalog: InMemoryCatalog,
    certificates: InMemoryCertificateSource,
    mock_event_bus: MockEventBus,
    clock: FakeClock,
) -> InventoryServices:
    return build_inventory_services(
        inventory_config,
        store,
        catalog,
        certificates,
        event_bus=mock_event_bus,
        clock=clock,
    )


@pytest.fixture
def ledger(services: InventoryServices):
    return services.ledger


@pytest.fixture
def reservations(services: InventoryServices):
    return services.reservations


@pytest_asyncio.fixture
async def listed(services: InventoryServices, catalog: InMemoryCatalog) -> Callable:
    """
    Factory that puts a product in the catalog and registers its stock.

    Usage:
        product, record = await listed(quantity=5)
    """
    async def _listed(quantity: int = 10, product: Optional[Product] = None, **product_kwargs):
        product = product or make_product(quantity=quantity, **product_kwargs)
        catalog.add(product)
        record: StockRecord = await services.tracking.register_product(
            product.product_id, quantity, product.owner_id, owner_id=product.owner_id
        )
        return product, record

    return _listed
