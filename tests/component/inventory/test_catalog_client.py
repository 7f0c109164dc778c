"""
Catalog Client Component Tests

CatalogClient over httpx.MockTransport.

Usage:
    pytest tests/component/inventory/test_catalog_client.py -v
"""

import httpx
import pytest

from microservices.inventory_service.clients.catalog_client import CatalogClient
from microservices.inventory_service.models import BoundingBox, ProductCategory, ProductFilter
from microservices.inventory_service.protocols import StoreUnavailableError
from tests.fixtures import make_certificate, make_product

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


def client_for(handler) -> CatalogClient:
    return CatalogClient(
        base_url="http://catalog.test/",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestGetProduct:

    async def test_found(self):
        product = make_product(product_id="prod_1", name="Beetroot")

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/products/prod_1"
            return httpx.Response(200, json=product.model_dump(mode="json"))

        async with client_for(handler) as client:
            result = await client.get_product("prod_1")

        assert result.product_id == "prod_1"
        assert result.name == "Beetroot"

    async def test_not_found(self):
        async with client_for(lambda request: httpx.Response(404)) as client:
            assert await client.get_product("ghost") is None

    async def test_server_error(self):
        async with client_for(lambda request: httpx.Response(500)) as client:
            with pytest.raises(StoreUnavailableError):
                await client.get_product("prod_1")

    async def test_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with client_for(handler) as client:
            with pytest.raises(StoreUnavailableError):
                await client.get_product("prod_1")


class TestListProducts:

    async def test_filter_sent_as_params(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            return httpx.Response(200, json={"products": [make_product().model_dump(mode="json")]})

        product_filter = ProductFilter(
            category=ProductCategory.VEGETABLES,
            certified_only=True,
            bbox=BoundingBox(min_latitude=51.0, max_latitude=53.0, min_longitude=20.0, max_longitude=22.0),
        )
        async with client_for(handler) as client:
            products = await client.list_products(product_filter)

        assert len(products) == 1
        assert seen["category"] == "vegetables"
        assert seen["status"] == "available"
        assert seen["certified_only"] == "true"
        assert seen["min_lat"] == "51.0"
        assert seen["max_lon"] == "22.0"
        assert "search" not in seen

    async def test_bare_list_payload(self):
        payload = [make_product().model_dump(mode="json"), make_product().model_dump(mode="json")]

        async with client_for(lambda request: httpx.Response(200, json=payload)) as client:
            products = await client.list_products(ProductFilter())

        assert len(products) == 2

    async def test_server_error(self):
        async with client_for(lambda request: httpx.Response(503)) as client:
            with pytest.raises(StoreUnavailableError):
                await client.list_products(ProductFilter())


class TestCertificates:

    async def test_certificates(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["owner_id"] == "farmer_1"
            return httpx.Response(200, json={"certificates": [make_certificate().model_dump(mode="json")]})

        async with client_for(handler) as client:
            certificates = await client.get_certificates("prod_1", owner_id="farmer_1")

        assert [c.certificate_id for c in certificates] == ["cert_eu_organic"]

    async def test_failure_yields_empty_list(self):
        async with client_for(lambda request: httpx.Response(500)) as client:
            assert await client.get_certificates("prod_1") == []
