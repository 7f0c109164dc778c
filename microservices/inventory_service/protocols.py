"""
Inventory Service Protocols (Interfaces)

These interfaces define contracts for dependency injection.
NO import-time I/O dependencies - safe to import anywhere.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

# Import only models (no I/O dependencies)
from .models import (
    Certificate,
    Product,
    ProductFilter,
    ProductStatus,
    StatusTransition,
    StockRecord,
)


# ============================================================================
# Custom Exceptions - defined here to avoid importing repository
# ============================================================================

class InventoryServiceError(Exception):
    """Base exception for inventory service errors"""
    error_code = "INVENTORY_ERROR"


class ProductNotFoundError(InventoryServiceError):
    """No stock record for the product"""
    error_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class ProductAlreadyExistsError(InventoryServiceError):
    """Stock already registered for the product"""
    error_code = "PRODUCT_ALREADY_EXISTS"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Stock already registered for product {product_id}")


class InsufficientStockError(InventoryServiceError):
    """Requested quantity exceeds what is left"""
    error_code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int, status: Optional[ProductStatus] = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.status = status
        if status is not None and status != ProductStatus.AVAILABLE:
            message = f"Product {product_id} is {status.value} and cannot be reserved"
        else:
            message = f"Insufficient stock for product {product_id}: requested {requested}, only {available} left"
        super().__init__(message)


class InvalidStatusTransitionError(InventoryServiceError):
    """Status change not allowed from the current status"""
    error_code = "INVALID_STATUS_TRANSITION"

    def __init__(self, product_id: str, current: ProductStatus, requested: ProductStatus, allowed: List[ProductStatus]):
        self.product_id = product_id
        self.current = current
        self.requested = requested
        self.allowed = allowed
        allowed_text = ", ".join(s.value for s in allowed) or "none"
        super().__init__(
            f"Cannot change product {product_id} from {current.value} to {requested.value} "
            f"(allowed: {allowed_text})"
        )


class ReservationExpiredError(InventoryServiceError):
    """Token is expired, swept, released or unknown"""
    error_code = "RESERVATION_EXPIRED"

    def __init__(self, token_id: str, reason: str = "expired"):
        self.token_id = token_id
        self.reason = reason
        super().__init__(f"Reservation {token_id} is no longer valid ({reason})")


class RestockNotAllowedError(InventoryServiceError):
    """Restock attempted outside available/unavailable"""
    error_code = "RESTOCK_NOT_ALLOWED"

    def __init__(self, product_id: str, status: ProductStatus):
        self.product_id = product_id
        self.status = status
        super().__init__(f"Cannot restock product {product_id} in status {status.value}")


class ProductHasActiveReservationsError(InventoryServiceError):
    """Removal refused while holds reference the product"""
    error_code = "PRODUCT_HAS_ACTIVE_RESERVATIONS"

    def __init__(self, product_id: str, active: int):
        self.product_id = product_id
        self.active = active
        super().__init__(f"Product {product_id} has {active} active reservation(s)")


class DuplicateTrackingIdError(InventoryServiceError):
    """Generated tracking id already taken; retried internally"""
    error_code = "DUPLICATE_TRACKING_ID"

    def __init__(self, tracking_id: str):
        self.tracking_id = tracking_id
        super().__init__(f"Tracking id already in use: {tracking_id}")


class TrackingIdUnavailableError(InventoryServiceError):
    """Could not find a free tracking id within the allowed attempts"""
    error_code = "TRACKING_ID_UNAVAILABLE"


class TrackingNotFoundError(InventoryServiceError):
    """Unknown tracking id"""
    error_code = "TRACKING_NOT_FOUND"

    def __init__(self, tracking_id: str):
        self.tracking_id = tracking_id
        super().__init__(f"No product with tracking id {tracking_id}")


class StoreUnavailableError(InventoryServiceError):
    """Persistence did not answer in time or failed"""
    error_code = "STORE_UNAVAILABLE"


class InvalidQuantityError(InventoryServiceError, ValueError):
    """Quantity is not a positive integer"""
    error_code = "INVALID_QUANTITY"


class InvalidSearchError(InventoryServiceError, ValueError):
    """Inconsistent search parameters"""
    error_code = "INVALID_SEARCH"


# ============================================================================
# Repository Protocol
# ============================================================================

@runtime_checkable
class StockStoreProtocol(Protocol):
    """
    Interface for stock persistence.

    Implementations must apply each write atomically: either every field
    and every appended transition is stored, or none.
    """

    async def initialize(self) -> None:
        """Open connections and ensure schema"""
        ...

    async def close(self) -> None:
        """Release connections"""
        ...

    async def health_check(self) -> bool:
        ...

    async def create_stock(self, record: StockRecord) -> None:
        """
        Insert a new stock record together with its history.

        Raises:
            ProductAlreadyExistsError: product_id already stored
            DuplicateTrackingIdError: tracking_id already stored
        """
        ...

    async def get_stock(self, product_id: str) -> Optional[StockRecord]:
        ...

    async def get_stock_many(self, product_ids: List[str]) -> Dict[str, StockRecord]:
        """Records for the ids that exist; unknown ids are omitted"""
        ...

    async def get_stock_by_tracking_id(self, tracking_id: str) -> Optional[StockRecord]:
        ...

    async def tracking_id_exists(self, tracking_id: str) -> bool:
        ...

    async def save_stock(
        self,
        product_id: str,
        quantity: int,
        status: ProductStatus,
        updated_at: datetime,
        new_transitions: Optional[List[StatusTransition]] = None,
        token_id: Optional[str] = None,
    ) -> bool:
        """
        Update quantity/status and append transitions in one transaction.

        When ``token_id`` is given the write is recorded against that
        reservation token; a second write for the same token is skipped.
        Returns False when the write was skipped.
        """
        ...

    async def token_applied(self, token_id: str) -> bool:
        """Whether a write for this reservation token has been stored"""
        ...

    async def delete_stock(self, product_id: str) -> bool:
        """Remove the stock record; status history rows are retained"""
        ...


# ============================================================================
# External Collaborator Protocols
# ============================================================================

@runtime_checkable
class CatalogProtocol(Protocol):
    """Read-only access to the product catalog"""

    async def get_product(self, product_id: str) -> Optional[Product]:
        ...

    async def list_products(self, product_filter: ProductFilter) -> List[Product]:
        """Products matching the filter; may return extra rows outside ``bbox``"""
        ...


@runtime_checkable
class CertificateSourceProtocol(Protocol):
    """Certificate lookup for a product and its owner"""

    async def get_certificates(self, product_id: str, owner_id: Optional[str] = None) -> List[Certificate]:
        ...


@runtime_checkable
class EventBusProtocol(Protocol):
    """Interface for the event bus"""

    async def publish_event(self, event: Any) -> bool:
        """Publish an event; returns False on failure"""
        ...
