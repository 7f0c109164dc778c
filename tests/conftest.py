"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - api/        : HTTP contract tests against the ASGI app
    - component/  : Component tests (in-memory store, mocked event bus)
    - unit/       : Unit tests (pure functions, no I/O)
"""
import os
import sys
from typing import Any, Dict, List

import pytest

# Set testing environment BEFORE any imports
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("NATS_ENABLED", "false")
os.environ.setdefault("INVENTORY_STORE_BACKEND", "memory")

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from tests.fixtures import (
    FakeClock,
    make_farmer_id,
    make_holder_id,
    make_product_id,
)


# =============================================================================
# Test Configuration
# =============================================================================

class TestConfig:
    """Centralized test configuration"""

    SERVICE_NAME = "inventory_service"
    SERVICE_PORT = 8252
    API_PREFIX = "/api/v1/inventory"


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration"""
    return TestConfig()


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    """Fake UTC clock shared by the ledger under test"""
    return FakeClock()


@pytest.fixture
def product_id() -> str:
    return make_product_id()


@pytest.fixture
def farmer_id() -> str:
    return make_farmer_id()


@pytest.fixture
def holder_id() -> str:
    return make_holder_id()


# =============================================================================
# Assertion Helpers
# =============================================================================

class AssertionHelpers:
    """Custom assertion helpers for tests"""

    @staticmethod
    def assert_http_success(response, expected_status: int = 200):
        """Assert HTTP response is successful"""
        assert response.status_code == expected_status, \
            f"Expected {expected_status}, got {response.status_code}: {response.text}"

    @staticmethod
    def assert_has_fields(data: Dict, fields: List[str]):
        """Assert dict has required fields"""
        missing = [f for f in fields if f not in data]
        assert not missing, f"Missing fields: {missing}"

    @staticmethod
    def assert_error(response, status_code: int, error_code: str) -> Dict[str, Any]:
        """Assert an error response with the given status and error_code"""
        assert response.status_code == status_code, \
            f"Expected {status_code}, got {response.status_code}: {response.text}"
        body = response.json()
        assert body.get("error_code") == error_code, body
        return body


@pytest.fixture
def assertions() -> AssertionHelpers:
    """Provide assertion helpers"""
    return AssertionHelpers()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "api: API contract tests")
    config.addinivalue_line("markers", "component: Component tests")
    config.addinivalue_line("markers", "unit: Unit tests")
