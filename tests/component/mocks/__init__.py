"""
Component Test Mocks

Shared mock implementations for component testing.
These mocks replace real I/O dependencies (database, NATS, slow stores).
"""

from .db_mock import MockConnection, MockPostgresClient
from .nats_mock import MockEventBus
from .store_mock import ControlledStockStore

__all__ = [
    'MockConnection',
    'MockPostgresClient',
    'MockEventBus',
    'ControlledStockStore',
]
