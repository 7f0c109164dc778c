"""
Inventory Event Handler Component Tests

payment.completed / order.canceled / product.deleted handling and
best-effort publishing.

Usage:
    pytest tests/component/inventory/test_event_handlers.py -v
"""

import pytest
import pytest_asyncio

from microservices.inventory_service.events.handlers import get_event_handlers
from microservices.inventory_service.events.publishers import publish_stock_restocked
from microservices.inventory_service.protocols import ProductNotFoundError, StoreUnavailableError

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


@pytest_asyncio.fixture
async def subscribed(reservations, mock_event_bus):
    """Mock bus with the inventory handlers subscribed"""
    for pattern, handler in get_event_handlers(reservations).items():
        await mock_event_bus.subscribe_to_events(pattern, handler, durable=f"test-{pattern}")
    return mock_event_bus


class TestSubscriptions:

    def test_handled_subjects(self, reservations):
        assert set(get_event_handlers(reservations)) == {
            "payment.completed",
            "order.canceled",
            "product.deleted",
        }


class TestPaymentCompleted:

    async def test_finalizes_cart(self, subscribed, reservations, ledger, listed, holder_id):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 2)

        await subscribed.simulate_event("payment.completed", {"user_id": holder_id, "amount": "20.00"})

        assert (await ledger.get_stock(product.product_id)).quantity == 3
        assert reservations.get_holds(holder_id) == []
        subscribed.assert_event_published("inventory.committed", {"holder_id": holder_id})

    async def test_holder_from_metadata(self, subscribed, reservations, ledger, listed, holder_id):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 1)

        await subscribed.simulate_event("payment.completed", {"metadata": {"holder_id": holder_id}})

        assert (await ledger.get_stock(product.product_id)).quantity == 4

    async def test_missing_holder_ignored(self, subscribed):
        await subscribed.simulate_event("payment.completed", {"amount": "20.00"})
        subscribed.assert_no_events_published("inventory.committed")

    async def test_store_outage_raises_for_redelivery(self, subscribed, reservations, listed, holder_id, store):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 2)
        store.delay("save_stock", 1.0)

        with pytest.raises(StoreUnavailableError):
            await subscribed.simulate_event("payment.completed", {"user_id": holder_id})

        assert len(reservations.get_holds(holder_id)) == 1


class TestOrderCanceled:

    async def test_releases_all_holds(self, subscribed, reservations, ledger, listed, holder_id):
        a, _ = await listed(quantity=5)
        b, _ = await listed(quantity=5)
        await reservations.hold(a.product_id, holder_id, 2)
        await reservations.hold(b.product_id, holder_id, 3)

        await subscribed.simulate_event(
            "order.canceled", {"user_id": holder_id, "cancellation_reason": "changed mind"}
        )

        assert reservations.get_holds(holder_id) == []
        assert ledger.reserved_quantity(a.product_id) == 0
        subscribed.assert_event_published("inventory.released", {"reason": "changed mind"})


class TestProductDeleted:

    async def test_drains_and_removes(self, subscribed, reservations, ledger, listed, holder_id):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 1)

        await subscribed.simulate_event("product.deleted", {"product_id": product.product_id})

        assert reservations.get_holds(holder_id) == []
        with pytest.raises(ProductNotFoundError):
            await ledger.get_stock(product.product_id)

    async def test_unknown_product_ignored(self, subscribed):
        await subscribed.simulate_event("product.deleted", {"product_id": "never-registered"})


class TestPublishing:

    async def test_bus_failure_does_not_break_operation(self, reservations, listed, holder_id, mock_event_bus):
        product, _ = await listed(quantity=5)
        mock_event_bus.set_error(RuntimeError("nats down"))

        reservation = await reservations.hold(product.product_id, holder_id, 1)

        assert reservation.quantity == 1

    async def test_publish_reports_failure(self, mock_event_bus):
        mock_event_bus.set_error(RuntimeError("nats down"))
        assert await publish_stock_restocked(mock_event_bus, "p", 1, 1, "farmer") is False

    async def test_publish_without_bus(self):
        assert await publish_stock_restocked(None, "p", 1, 1, "farmer") is False

    async def test_publish_success(self, mock_event_bus):
        assert await publish_stock_restocked(mock_event_bus, "p", 2, 7, "farmer") is True
        event = mock_event_bus.get_last_event()
        assert event["type"] == "inventory.restocked"
        assert event["subject"] == "p"
        assert event["data"]["quantity"] == 7
