"""
Inventory Service Data Models

Stock, status history, reservations, discovery pages and checkout summaries
for the organic marketplace.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator


# ====================
# Enumerations
# ====================

class ProductStatus(str, Enum):
    """Product lifecycle status"""
    AVAILABLE = "available"
    PREPARING = "preparing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    UNAVAILABLE = "unavailable"


# Every edge not listed here is rejected, self-edges included.
ALLOWED_TRANSITIONS: Dict[ProductStatus, FrozenSet[ProductStatus]] = {
    ProductStatus.AVAILABLE: frozenset({ProductStatus.PREPARING, ProductStatus.UNAVAILABLE}),
    ProductStatus.UNAVAILABLE: frozenset({ProductStatus.AVAILABLE}),
    ProductStatus.PREPARING: frozenset({ProductStatus.SHIPPED}),
    ProductStatus.SHIPPED: frozenset({ProductStatus.DELIVERED}),
    ProductStatus.DELIVERED: frozenset(),
}

# Restock is only meaningful while the product is still on sale.
RESTOCKABLE_STATUSES: FrozenSet[ProductStatus] = frozenset(
    {ProductStatus.AVAILABLE, ProductStatus.UNAVAILABLE}
)


def is_valid_transition(current: ProductStatus, new: ProductStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


class ProductCategory(str, Enum):
    """Closed set of catalog categories"""
    FRUITS = "fruits"
    VEGETABLES = "vegetables"
    DAIRY = "dairy"
    MEAT = "meat"
    BAKERY = "bakery"
    PRESERVES = "preserves"
    HONEY = "honey"
    HERBS = "herbs"
    BEVERAGES = "beverages"
    OTHER = "other"


class Unit(str, Enum):
    """Sale unit"""
    KG = "kg"
    G = "g"
    L = "l"
    ML = "ml"
    PCS = "pcs"


class CertificateType(str, Enum):
    ORGANIC = "organic"
    ECO = "eco"
    FAIR_TRADE = "fair-trade"
    OTHER = "other"


class ReservationStatus(str, Enum):
    """Reservation status"""
    ACTIVE = "active"
    COMMITTED = "committed"
    RELEASED = "released"
    EXPIRED = "expired"


class PaymentMethod(str, Enum):
    CARD = "card"
    TRANSFER = "transfer"
    CASH = "cash"


class SortKey(str, Enum):
    PRICE = "price"
    RATING = "rating"
    DISTANCE = "distance"
    CREATED_AT = "created_at"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


# ====================
# Geography
# ====================

class GeoPoint(BaseModel):
    """WGS84 coordinate"""
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class BoundingBox(BaseModel):
    """Lat/lon box used as a cheap candidate prefilter"""
    model_config = ConfigDict(frozen=True)

    min_latitude: float = Field(..., ge=-90, le=90)
    max_latitude: float = Field(..., ge=-90, le=90)
    min_longitude: float = Field(..., ge=-180, le=180)
    max_longitude: float = Field(..., ge=-180, le=180)

    def contains(self, point: GeoPoint) -> bool:
        if not (self.min_latitude <= point.latitude <= self.max_latitude):
            return False
        if self.min_longitude <= self.max_longitude:
            return self.min_longitude <= point.longitude <= self.max_longitude
        # Box wraps the antimeridian
        return point.longitude >= self.min_longitude or point.longitude <= self.max_longitude


class ProductLocation(BaseModel):
    """Where a product is produced"""
    point: GeoPoint
    address: Optional[str] = None


# ====================
# Catalog view
# ====================

class Certificate(BaseModel):
    """Certification attached to a product or farm"""
    certificate_id: str
    name: str
    type: CertificateType = CertificateType.OTHER
    issuing_authority: Optional[str] = None
    valid_until: Optional[datetime] = None
    is_verified: bool = False


class Product(BaseModel):
    """Catalog product as read from the catalog service"""
    product_id: str
    name: str
    description: str = ""
    owner_id: str
    category: ProductCategory = ProductCategory.OTHER
    subcategory: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    unit: Unit = Unit.KG
    unit_weight_kg: Optional[Decimal] = Field(default=None, gt=0)
    quantity: int = Field(default=0, ge=0)
    status: ProductStatus = ProductStatus.AVAILABLE
    location: Optional[ProductLocation] = None
    harvest_date: Optional[datetime] = None
    tracking_id: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    certification_refs: List[str] = Field(default_factory=list)
    is_certified: bool = False
    average_rating: float = Field(default=0.0, ge=0, le=5)
    created_at: Optional[datetime] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()


class ProductSummary(BaseModel):
    """Public product details shown on the tracking page"""
    name: str
    description: str = ""
    category: ProductCategory
    subcategory: Optional[str] = None
    harvest_date: Optional[datetime] = None
    images: List[str] = Field(default_factory=list)
    is_certified: bool = False
    location: Optional[ProductLocation] = None

    @classmethod
    def from_product(cls, product: Product) -> "ProductSummary":
        return cls(
            name=product.name,
            description=product.description,
            category=product.category,
            subcategory=product.subcategory,
            harvest_date=product.harvest_date,
            images=list(product.images),
            is_certified=product.is_certified,
            location=product.location,
        )


# ====================
# Ledger
# ====================

class StatusTransition(BaseModel):
    """One immutable entry of a product's status history"""
    model_config = ConfigDict(frozen=True)

    status: ProductStatus
    timestamp: datetime
    actor_id: str
    note: Optional[str] = None
    previous_hash: str = ""
    entry_hash: str = ""


class StockRecord(BaseModel):
    """Ledger-owned stock state for one product"""
    product_id: str
    tracking_id: str
    owner_id: Optional[str] = None
    quantity: int = Field(default=0, ge=0)
    status: ProductStatus = ProductStatus.AVAILABLE
    status_history: List[StatusTransition] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ReservationToken(BaseModel):
    """Ledger claim handle for reserved units"""
    model_config = ConfigDict(frozen=True)

    token_id: str
    product_id: str
    holder_id: Optional[str] = None
    quantity: int = Field(..., gt=0)
    created_at: datetime
    expires_at: datetime


class Reservation(BaseModel):
    """A shopper's timed hold on units of one product"""
    reservation_id: str
    product_id: str
    holder_id: str
    quantity: int = Field(..., gt=0)
    status: ReservationStatus = ReservationStatus.ACTIVE
    created_at: datetime
    expires_at: datetime


class CommittedLine(BaseModel):
    product_id: str
    quantity: int
    reservation_id: str


class CommitFailure(BaseModel):
    product_id: str
    quantity: int
    reason: str
    error_code: str


class CommitResult(BaseModel):
    """Outcome of finalizing a holder's cart"""
    holder_id: str
    committed: List[CommittedLine] = Field(default_factory=list)
    failed: List[CommitFailure] = Field(default_factory=list)

    @computed_field
    @property
    def success(self) -> bool:
        return not self.failed

    @computed_field
    @property
    def partial(self) -> bool:
        return bool(self.committed) and bool(self.failed)


# ====================
# Discovery
# ====================

class ProductFilter(BaseModel):
    """Catalog filter; ``bbox`` lets the catalog prefilter by location"""
    category: Optional[ProductCategory] = None
    subcategory: Optional[str] = None
    owner_id: Optional[str] = None
    status: Optional[ProductStatus] = ProductStatus.AVAILABLE
    min_price: Optional[Decimal] = Field(default=None, ge=0)
    max_price: Optional[Decimal] = Field(default=None, ge=0)
    search: Optional[str] = None
    certified_only: bool = False
    bbox: Optional[BoundingBox] = None

    @model_validator(mode='after')
    def validate_price_range(self):
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("min_price cannot exceed max_price")
        return self


class NearbyProduct(BaseModel):
    """Search hit with ledger availability and optional distance"""
    product: Product
    distance_km: Optional[float] = None
    available_quantity: int = 0


class SearchPage(BaseModel):
    items: List[NearbyProduct] = Field(default_factory=list)
    total: int = 0
    limit: int
    offset: int
    has_more: bool = False


# ====================
# Carbon & checkout
# ====================

class CarbonLine(BaseModel):
    product_id: str
    category: ProductCategory
    weight_kg: float
    distance_km: float
    production_kg: float
    transport_kg: float
    total_kg: float


class CarbonEstimate(BaseModel):
    """Derived kg CO2e for an order, never stored"""
    total_kg: float = 0.0
    lines: List[CarbonLine] = Field(default_factory=list)


class OrderLine(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)


class OrderSummary(BaseModel):
    currency: str
    subtotal: Decimal
    delivery_fee: Decimal
    processing_fee: Decimal
    total: Decimal
    payment_method: PaymentMethod
    carbon_estimate: CarbonEstimate


class TrackingView(BaseModel):
    """Public provenance view for a tracking id"""
    tracking_id: str
    product_id: str
    status: ProductStatus
    farmer_id: Optional[str] = None
    product: Optional[ProductSummary] = None
    certificates: List[Certificate] = Field(default_factory=list)
    status_history: List[StatusTransition] = Field(default_factory=list)
    history_verified: bool = True


# ====================
# Request Models
# ====================

class RegisterStockRequest(BaseModel):
    quantity: int = Field(..., ge=0)
    note: Optional[str] = Field(None, max_length=500)


class RestockRequest(BaseModel):
    delta: int = Field(..., gt=0)
    note: Optional[str] = Field(None, max_length=500)


class ReserveRequest(BaseModel):
    quantity: int = Field(..., gt=0)
    holder_id: Optional[str] = None
    ttl_seconds: Optional[int] = Field(None, gt=0)


class StatusUpdateRequest(BaseModel):
    status: ProductStatus
    note: Optional[str] = Field(None, max_length=500)


class OrderSummaryRequest(BaseModel):
    items: List[OrderLine] = Field(..., min_length=1)
    destination: GeoPoint
    payment_method: PaymentMethod = PaymentMethod.CARD


# ====================
# Response Models
# ====================

class StockResponse(BaseModel):
    record: StockRecord
    reserved_quantity: int
    available_quantity: int


class HistoryResponse(BaseModel):
    product_id: str
    status_history: List[StatusTransition]
    verified: bool


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    port: int
    version: str
    timestamp: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    detail: str
    error_code: str
