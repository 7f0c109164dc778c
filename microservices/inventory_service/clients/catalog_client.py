"""
Catalog Service Client for Inventory Service

Reads products and certificates from the external catalog over HTTP.
"""

import httpx
import logging
from typing import Any, Dict, List, Optional

from ..models import Certificate, Product, ProductFilter
from ..protocols import StoreUnavailableError

logger = logging.getLogger(__name__)


class CatalogClient:
    """Client for the catalog service"""

    def __init__(
        self,
        base_url: str = "http://localhost:8253",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.client = client or httpx.AsyncClient(timeout=timeout)
        logger.info(f"CatalogClient initialized with base_url: {self.base_url}")

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @staticmethod
    def _filter_params(product_filter: ProductFilter) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        for field in ("category", "subcategory", "owner_id", "status", "min_price", "max_price", "search"):
            value = getattr(product_filter, field)
            if value is not None:
                params[field] = getattr(value, "value", value)
        if product_filter.certified_only:
            params["certified_only"] = "true"
        if product_filter.bbox is not None:
            bbox = product_filter.bbox
            params.update({
                "min_lat": bbox.min_latitude,
                "max_lat": bbox.max_latitude,
                "min_lon": bbox.min_longitude,
                "max_lon": bbox.max_longitude,
            })
        return params

    async def get_product(self, product_id: str) -> Optional[Product]:
        try:
            response = await self.client.get(f"{self.base_url}/api/v1/products/{product_id}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return Product.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to get product {product_id}: {e.response.status_code}")
            raise StoreUnavailableError(f"Catalog error {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Error getting product {product_id}: {e}")
            raise StoreUnavailableError("Catalog unreachable") from e

    async def list_products(self, product_filter: ProductFilter) -> List[Product]:
        try:
            response = await self.client.get(
                f"{self.base_url}/api/v1/products",
                params=self._filter_params(product_filter),
            )
            response.raise_for_status()
            payload = response.json()
            items = payload.get("products", []) if isinstance(payload, dict) else payload
            return [Product.model_validate(item) for item in items]
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to list products: {e.response.status_code}")
            raise StoreUnavailableError(f"Catalog error {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Error listing products: {e}")
            raise StoreUnavailableError("Catalog unreachable") from e

    async def get_certificates(self, product_id: str, owner_id: Optional[str] = None) -> List[Certificate]:
        """Certificates are display-only; failures yield an empty list"""
        try:
            params = {"owner_id": owner_id} if owner_id else None
            response = await self.client.get(
                f"{self.base_url}/api/v1/products/{product_id}/certificates",
                params=params,
            )
            response.raise_for_status()
            payload = response.json()
            items = payload.get("certificates", []) if isinstance(payload, dict) else payload
            return [Certificate.model_validate(item) for item in items]
        except Exception as e:
            logger.error(f"Error getting certificates for {product_id}: {e}")
            return []
