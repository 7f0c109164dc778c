"""
API Test Layer Configuration

HTTP contract tests against the FastAPI app through httpx's ASGI
transport. The lifespan is not run; services are wired over in-memory
collaborators and injected into the app.

Usage:
    pytest tests/api -v
"""
import os
import sys

import httpx
import pytest
import pytest_asyncio

os.environ["ENV"] = "testing"
os.environ["NATS_ENABLED"] = "false"
os.environ["INVENTORY_SWEEP_ENABLED"] = "false"

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from core.config import InventoryConfig
from microservices.inventory_service import main
from microservices.inventory_service.factory import InventoryServices, build_inventory_services
from microservices.inventory_service.memory_repository import (
    InMemoryCatalog,
    InMemoryCertificateSource,
    InMemoryStockRepository,
)
from tests.component.mocks import MockEventBus


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog()


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    return MockEventBus()


@pytest.fixture
def services(catalog, mock_event_bus, clock) -> InventoryServices:
    return build_inventory_services(
        InventoryConfig(),
        InMemoryStockRepository(),
        catalog,
        InMemoryCertificateSource(),
        event_bus=mock_event_bus,
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(services, monkeypatch):
    """AsyncClient bound to the app with test services injected"""
    monkeypatch.setattr(main, "services", services)
    main.app.dependency_overrides[main.get_services] = lambda: services
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    main.app.dependency_overrides.clear()
