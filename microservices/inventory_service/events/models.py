"""
Inventory Service Event Models

Pydantic models for events published by inventory service
"""

from pydantic import BaseModel, Field
from enum import Enum
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Event Type Definitions (Service-Specific)
# =============================================================================

class InventoryEventType(str, Enum):
    """
    Events published by inventory_service.

    Stream: inventory-stream
    Subjects: inventory.>
    """
    STOCK_RESERVED = "inventory.reserved"
    STOCK_COMMITTED = "inventory.committed"
    STOCK_RELEASED = "inventory.released"
    STOCK_EXPIRED = "inventory.expired"
    STOCK_FAILED = "inventory.failed"
    STATUS_CHANGED = "inventory.status_changed"
    STOCK_RESTOCKED = "inventory.restocked"


class InventorySubscribedEventType(str, Enum):
    """Events that inventory_service subscribes to from other services."""
    PAYMENT_COMPLETED = "payment.completed"
    ORDER_CANCELED = "order.canceled"
    PRODUCT_DELETED = "product.deleted"


class InventoryStreamConfig:
    """Stream configuration for inventory_service"""
    STREAM_NAME = "inventory-stream"
    SUBJECTS = ["inventory.>"]
    MAX_MESSAGES = 100000
    CONSUMER_PREFIX = "inventory"


# =============================================================================
# Event Data Models
# =============================================================================

class HoldEventData(BaseModel):
    """Reservation lifecycle payload (reserved / released / expired)"""
    reservation_id: str
    product_id: str
    holder_id: str
    quantity: int
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class CommittedItem(BaseModel):
    product_id: str
    quantity: int
    reservation_id: str


class StockCommittedEvent(BaseModel):
    """Event published when a holder's cart is committed"""
    holder_id: str
    items: List[CommittedItem]
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class StockFailedEvent(BaseModel):
    """Event published when some lines of a finalize could not be committed"""
    holder_id: str
    items: List[Dict[str, Any]]
    error_code: Optional[str] = None
    error_message: str
    timestamp: datetime = Field(default_factory=_utcnow)


class StatusChangedEvent(BaseModel):
    """Event published for every appended status transition"""
    product_id: str
    previous_status: Optional[str] = None
    new_status: str
    actor_id: str
    note: Optional[str] = None
    entry_hash: str
    timestamp: datetime


class StockRestockedEvent(BaseModel):
    product_id: str
    delta: int
    quantity: int
    actor_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
