"""
Inventory Service Events Module

Exports all event-related functionality for inventory service
"""

from .models import (
    InventoryEventType,
    InventorySubscribedEventType,
    InventoryStreamConfig,
    HoldEventData,
    CommittedItem,
    StockCommittedEvent,
    StockFailedEvent,
    StatusChangedEvent,
    StockRestockedEvent,
)

from .publishers import (
    publish_stock_reserved,
    publish_stock_released,
    publish_stock_expired,
    publish_stock_committed,
    publish_stock_failed,
    publish_status_changed,
    publish_stock_restocked,
)

__all__ = [
    # Event Types
    "InventoryEventType",
    "InventorySubscribedEventType",
    "InventoryStreamConfig",
    # Event Models
    "HoldEventData",
    "CommittedItem",
    "StockCommittedEvent",
    "StockFailedEvent",
    "StatusChangedEvent",
    "StockRestockedEvent",
    # Publishers
    "publish_stock_reserved",
    "publish_stock_released",
    "publish_stock_expired",
    "publish_stock_committed",
    "publish_stock_failed",
    "publish_status_changed",
    "publish_stock_restocked",
]
