"""
Discovery Service

Browse, search and "nearby" queries over the catalog, with ledger
availability overlaid and optional great-circle radius filtering.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from .geo_index import GeoIndex
from .inventory_ledger import InventoryLedger
from .models import (
    GeoPoint,
    NearbyProduct,
    ProductCategory,
    ProductFilter,
    ProductStatus,
    SearchPage,
    SortKey,
    SortOrder,
)
from .protocols import CatalogProtocol, InvalidSearchError, StoreUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 100
DEFAULT_NEARBY_RADIUS_KM = 50.0


def _sort_value(sort: SortKey) -> Callable[[NearbyProduct], Any]:
    if sort == SortKey.PRICE:
        return lambda hit: hit.product.price
    if sort == SortKey.RATING:
        return lambda hit: hit.product.average_rating
    if sort == SortKey.DISTANCE:
        return lambda hit: hit.distance_km
    return lambda hit: hit.product.created_at


def sort_hits(hits: List[NearbyProduct], sort: SortKey, order: SortOrder) -> List[NearbyProduct]:
    """
    Order hits by ``sort``; ties break by product_id ascending in either
    direction and hits without a value for the key go last.
    """
    value_of = _sort_value(sort)
    by_id = sorted(hits, key=lambda hit: hit.product.product_id)
    with_value = [hit for hit in by_id if value_of(hit) is not None]
    without_value = [hit for hit in by_id if value_of(hit) is None]
    # Stable sort keeps the product_id order among equal keys, also with reverse=True
    with_value.sort(key=value_of, reverse=(order == SortOrder.DESC))
    return with_value + without_value


class DiscoveryService:
    """Catalog search with availability and distance"""

    def __init__(
        self,
        catalog: CatalogProtocol,
        ledger: InventoryLedger,
        geo_index: Optional[GeoIndex] = None,
        catalog_timeout_seconds: float = 10.0,
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.geo_index = geo_index or GeoIndex()
        self.catalog_timeout_seconds = catalog_timeout_seconds

    async def search(
        self,
        product_filter: Optional[ProductFilter] = None,
        center: Optional[GeoPoint] = None,
        radius_km: Optional[float] = None,
        sort: SortKey = SortKey.CREATED_AT,
        order: SortOrder = SortOrder.DESC,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> SearchPage:
        """
        Filtered, sorted page of products.

        Raises:
            InvalidSearchError: radius or distance sort without a center,
                negative radius, or paging out of range
        """
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidSearchError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise InvalidSearchError("offset must be non-negative")
        if radius_km is not None:
            if center is None:
                raise InvalidSearchError("radius_km requires a center point")
            if radius_km < 0:
                raise InvalidSearchError("radius_km must be non-negative")
        if sort == SortKey.DISTANCE and center is None:
            raise InvalidSearchError("sorting by distance requires a center point")

        product_filter = product_filter or ProductFilter()
        wanted_status = product_filter.status

        # Status comes from the ledger, so the catalog is asked without it
        upstream = product_filter.model_copy(update={
            "status": None,
            "bbox": self.geo_index.bounding_box(center, radius_km) if radius_km is not None else product_filter.bbox,
        })
        try:
            products = await asyncio.wait_for(
                self.catalog.list_products(upstream), timeout=self.catalog_timeout_seconds
            )
        except asyncio.TimeoutError:
            raise StoreUnavailableError("Catalog did not answer in time")

        records = await self.ledger.get_stock_many([product.product_id for product in products])
        now = self.ledger.now()

        hits: List[NearbyProduct] = []
        for product in products:
            record = records.get(product.product_id)
            if record is not None:
                product = product.model_copy(update={
                    "status": record.status,
                    "quantity": record.quantity,
                    "tracking_id": record.tracking_id,
                })
                available = self.ledger.available_for(record, now)
            else:
                available = product.quantity if product.status == ProductStatus.AVAILABLE else 0

            if wanted_status is not None and product.status != wanted_status:
                continue

            distance = None
            if center is not None and product.location is not None:
                distance = self.geo_index.distance_km(center, product.location.point)
            if radius_km is not None and (distance is None or distance > radius_km):
                continue

            hits.append(NearbyProduct(product=product, distance_km=distance, available_quantity=available))

        ordered = sort_hits(hits, sort, order)
        total = len(ordered)
        page = ordered[offset:offset + limit]

        logger.debug(f"Search returned {len(page)} of {total} product(s)")
        return SearchPage(
            items=page,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + limit < total,
        )

    async def nearby(
        self,
        center: GeoPoint,
        radius_km: float = DEFAULT_NEARBY_RADIUS_KM,
        category: Optional[ProductCategory] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> SearchPage:
        """Available products within ``radius_km`` of ``center``, nearest first"""
        return await self.search(
            product_filter=ProductFilter(category=category),
            center=center,
            radius_km=radius_km,
            sort=SortKey.DISTANCE,
            order=SortOrder.ASC,
            limit=limit,
            offset=offset,
        )
