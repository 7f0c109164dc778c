"""
Inventory Fixtures

Factories for catalog products, locations and certificates.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from microservices.inventory_service.models import (
    Certificate,
    CertificateType,
    GeoPoint,
    Product,
    ProductCategory,
    ProductLocation,
    Unit,
)

from .common import make_farmer_id, make_product_id

# Reference points used across discovery and checkout tests
WARSAW = GeoPoint(latitude=52.2297, longitude=21.0122)
KRAKOW = GeoPoint(latitude=50.0647, longitude=19.9450)
LODZ = GeoPoint(latitude=51.7592, longitude=19.4560)
GDANSK = GeoPoint(latitude=54.3520, longitude=18.6466)

BASE_CREATED_AT = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


def make_location(point: GeoPoint = WARSAW, address: Optional[str] = None) -> ProductLocation:
    return ProductLocation(point=point, address=address)


def make_product(
    product_id: Optional[str] = None,
    name: str = "Organic apples",
    owner_id: Optional[str] = None,
    category: ProductCategory = ProductCategory.FRUITS,
    price: str = "10.00",
    unit: Unit = Unit.KG,
    quantity: int = 10,
    point: Optional[GeoPoint] = WARSAW,
    created_offset_days: int = 0,
    average_rating: float = 0.0,
    is_certified: bool = False,
    **overrides,
) -> Product:
    """Catalog product with sensible defaults; ``point=None`` drops the location"""
    data = dict(
        product_id=product_id or make_product_id(),
        name=name,
        description=f"{name} from a local farm",
        owner_id=owner_id or make_farmer_id(),
        category=category,
        price=Decimal(price),
        unit=unit,
        quantity=quantity,
        location=make_location(point) if point is not None else None,
        created_at=BASE_CREATED_AT + timedelta(days=created_offset_days),
        average_rating=average_rating,
        is_certified=is_certified,
    )
    data.update(overrides)
    return Product(**data)


def make_certificate(
    certificate_id: str = "cert_eu_organic",
    name: str = "EU Organic",
    type: CertificateType = CertificateType.ORGANIC,
    is_verified: bool = True,
) -> Certificate:
    return Certificate(
        certificate_id=certificate_id,
        name=name,
        type=type,
        issuing_authority="PL-EKO-01",
        is_verified=is_verified,
    )
