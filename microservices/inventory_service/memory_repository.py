"""
In-memory stock store, catalog and certificate source.

Used with INVENTORY_STORE_BACKEND=memory for local development and as the
default collaborators when no catalog service is configured.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from .models import (
    Certificate,
    Product,
    ProductFilter,
    ProductStatus,
    StatusTransition,
    StockRecord,
)
from .protocols import (
    DuplicateTrackingIdError,
    ProductAlreadyExistsError,
    ProductNotFoundError,
)

logger = logging.getLogger(__name__)


class InMemoryStockRepository:
    """Stock store held in process memory; mirrors the PostgreSQL constraints"""

    def __init__(self):
        self._records: Dict[str, StockRecord] = {}
        # Survives delete_stock, like the status_history table
        self._history: Dict[str, List[StatusTransition]] = {}
        # Reservation tokens whose decrement has been stored
        self._applied_tokens: Dict[str, str] = {}

    async def initialize(self) -> None:
        logger.info("Using in-memory stock store")

    async def close(self) -> None:
        pass

    async def health_check(self) -> bool:
        return True

    async def create_stock(self, record: StockRecord) -> None:
        if record.product_id in self._records:
            raise ProductAlreadyExistsError(record.product_id)
        if record.tracking_id in self._history:
            raise DuplicateTrackingIdError(record.tracking_id)
        self._records[record.product_id] = record.model_copy(update={"status_history": []})
        self._history[record.tracking_id] = list(record.status_history)

    def _materialize(self, record: StockRecord) -> StockRecord:
        return record.model_copy(update={"status_history": list(self._history.get(record.tracking_id, []))})

    async def get_stock(self, product_id: str) -> Optional[StockRecord]:
        record = self._records.get(product_id)
        return self._materialize(record) if record else None

    async def get_stock_many(self, product_ids: List[str]) -> Dict[str, StockRecord]:
        return {
            pid: self._materialize(self._records[pid])
            for pid in product_ids
            if pid in self._records
        }

    async def get_stock_by_tracking_id(self, tracking_id: str) -> Optional[StockRecord]:
        for record in self._records.values():
            if record.tracking_id == tracking_id:
                return self._materialize(record)
        return None

    async def tracking_id_exists(self, tracking_id: str) -> bool:
        return tracking_id in self._history

    async def save_stock(
        self,
        product_id: str,
        quantity: int,
        status: ProductStatus,
        updated_at: datetime,
        new_transitions: Optional[List[StatusTransition]] = None,
        token_id: Optional[str] = None,
    ) -> bool:
        if token_id is not None and token_id in self._applied_tokens:
            return False
        record = self._records.get(product_id)
        if record is None:
            raise ProductNotFoundError(product_id)
        if token_id is not None:
            self._applied_tokens[token_id] = product_id
        self._records[product_id] = record.model_copy(update={
            "quantity": quantity,
            "status": status,
            "updated_at": updated_at,
        })
        self._history.setdefault(record.tracking_id, []).extend(new_transitions or [])
        return True

    async def token_applied(self, token_id: str) -> bool:
        return token_id in self._applied_tokens

    async def delete_stock(self, product_id: str) -> bool:
        return self._records.pop(product_id, None) is not None


def _matches(product: Product, product_filter: ProductFilter) -> bool:
    f = product_filter
    if f.category is not None and product.category != f.category:
        return False
    if f.subcategory is not None and product.subcategory != f.subcategory:
        return False
    if f.owner_id is not None and product.owner_id != f.owner_id:
        return False
    if f.status is not None and product.status != f.status:
        return False
    if f.min_price is not None and product.price < Decimal(f.min_price):
        return False
    if f.max_price is not None and product.price > Decimal(f.max_price):
        return False
    if f.certified_only and not product.is_certified:
        return False
    if f.search:
        needle = f.search.lower()
        if needle not in product.name.lower() and needle not in product.description.lower():
            return False
    if f.bbox is not None:
        if product.location is None or not f.bbox.contains(product.location.point):
            return False
    return True


class InMemoryCatalog:
    """Catalog backed by a dict of products"""

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._products: Dict[str, Product] = {p.product_id: p for p in (products or [])}

    def add(self, product: Product) -> None:
        self._products[product.product_id] = product

    def remove(self, product_id: str) -> None:
        self._products.pop(product_id, None)

    async def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    async def list_products(self, product_filter: ProductFilter) -> List[Product]:
        return [p for p in self._products.values() if _matches(p, product_filter)]


class InMemoryCertificateSource:
    """Certificates indexed by product id and by owner id"""

    def __init__(self):
        self._by_product: Dict[str, List[Certificate]] = {}
        self._by_owner: Dict[str, List[Certificate]] = {}

    def add_for_product(self, product_id: str, certificate: Certificate) -> None:
        self._by_product.setdefault(product_id, []).append(certificate)

    def add_for_owner(self, owner_id: str, certificate: Certificate) -> None:
        self._by_owner.setdefault(owner_id, []).append(certificate)

    async def get_certificates(self, product_id: str, owner_id: Optional[str] = None) -> List[Certificate]:
        seen = set()
        result = []
        for certificate in self._by_product.get(product_id, []) + self._by_owner.get(owner_id, []):
            if certificate.certificate_id not in seen:
                seen.add(certificate.certificate_id)
                result.append(certificate)
        return result
