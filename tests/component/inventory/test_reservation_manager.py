"""
Reservation Manager Component Tests

Cart holds, replacement semantics, finalize and the expiry sweep.

Usage:
    pytest tests/component/inventory/test_reservation_manager.py -v
"""

import asyncio

import pytest

from microservices.inventory_service.models import ProductStatus, ReservationStatus
from microservices.inventory_service.protocols import (
    InsufficientStockError,
    ProductHasActiveReservationsError,
    ProductNotFoundError,
    StoreUnavailableError,
)

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


class TestHold:

    async def test_hold_creates_reservation(self, reservations, ledger, listed, holder_id, clock):
        product, _ = await listed(quantity=5)

        reservation = await reservations.hold(product.product_id, holder_id, 2)

        assert reservation.holder_id == holder_id
        assert reservation.quantity == 2
        assert reservation.status == ReservationStatus.ACTIVE
        assert (reservation.expires_at - clock()).total_seconds() == reservations.default_ttl_seconds
        assert ledger.reserved_quantity(product.product_id) == 2

    async def test_repeated_hold_replaces_quantity(self, reservations, ledger, listed, holder_id):
        product, _ = await listed(quantity=5)

        await reservations.hold(product.product_id, holder_id, 3)
        await reservations.hold(product.product_id, holder_id, 4)

        holds = reservations.get_holds(holder_id)
        assert len(holds) == 1
        assert holds[0].quantity == 4
        assert ledger.reserved_quantity(product.product_id) == 4

    async def test_concurrent_holds_for_same_key_do_not_stack(self, reservations, ledger, listed, holder_id):
        product, _ = await listed(quantity=10)

        await asyncio.gather(
            reservations.hold(product.product_id, holder_id, 3),
            reservations.hold(product.product_id, holder_id, 3),
        )

        assert ledger.reserved_quantity(product.product_id) == 3
        assert len(reservations.get_holds(holder_id)) == 1

    async def test_failed_hold_keeps_previous_quantity(self, reservations, ledger, listed, holder_id):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 2)

        with pytest.raises(InsufficientStockError):
            await reservations.hold(product.product_id, holder_id, 6)

        holds = reservations.get_holds(holder_id)
        assert holds[0].quantity == 2
        assert ledger.reserved_quantity(product.product_id) == 2

    async def test_holds_compete_across_holders(self, reservations, listed):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, "alice", 4)

        with pytest.raises(InsufficientStockError) as exc_info:
            await reservations.hold(product.product_id, "bob", 2)
        assert exc_info.value.available == 1

    async def test_ttl_clamped_to_maximum(self, reservations, listed, holder_id, clock):
        product, _ = await listed(quantity=5)

        reservation = await reservations.hold(product.product_id, holder_id, 1, ttl_seconds=10 ** 6)

        assert (reservation.expires_at - clock()).total_seconds() == reservations.max_ttl_seconds

    async def test_hold_publishes_reserved(self, reservations, listed, holder_id, mock_event_bus):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 2)

        mock_event_bus.assert_event_published(
            "inventory.reserved",
            {"product_id": product.product_id, "holder_id": holder_id, "quantity": 2},
        )

    async def test_holds_listed_by_product_id(self, reservations, listed, holder_id):
        first, _ = await listed(quantity=5, product_id="prod_b")
        second, _ = await listed(quantity=5, product_id="prod_a")
        await reservations.hold(first.product_id, holder_id, 1)
        await reservations.hold(second.product_id, holder_id, 1)

        assert [h.product_id for h in reservations.get_holds(holder_id)] == ["prod_a", "prod_b"]


class TestRelease:

    async def test_release_frees_units(self, reservations, ledger, listed, holder_id, mock_event_bus):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 2)

        assert await reservations.release(product.product_id, holder_id) is True

        assert ledger.reserved_quantity(product.product_id) == 0
        assert reservations.get_holds(holder_id) == []
        mock_event_bus.assert_event_published("inventory.released", {"product_id": product.product_id})

    async def test_release_without_hold(self, reservations, listed, holder_id):
        product, _ = await listed(quantity=5)
        assert await reservations.release(product.product_id, holder_id) is False

    async def test_release_all(self, reservations, ledger, listed, holder_id):
        a, _ = await listed(quantity=5)
        b, _ = await listed(quantity=5)
        await reservations.hold(a.product_id, holder_id, 1)
        await reservations.hold(b.product_id, holder_id, 2)

        assert await reservations.release_all(holder_id) == 2
        assert ledger.reserved_quantity(a.product_id) == 0
        assert ledger.reserved_quantity(b.product_id) == 0


class TestSweep:

    async def test_sweep_releases_expired_holds(self, reservations, ledger, listed, holder_id, clock, mock_event_bus):
        product, _ = await listed(quantity=5)
        reservation = await reservations.hold(product.product_id, holder_id, 3, ttl_seconds=30)
        clock.advance(31)

        assert await reservations.sweep_expired() == 1

        assert reservations.get_holds(holder_id) == []
        assert ledger.token_status(reservation.reservation_id) == ReservationStatus.EXPIRED
        mock_event_bus.assert_event_published("inventory.expired", {"reservation_id": reservation.reservation_id})

    async def test_sweep_keeps_live_holds(self, reservations, listed, holder_id, clock):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 3, ttl_seconds=300)
        clock.advance(10)

        assert await reservations.sweep_expired() == 0
        assert len(reservations.get_holds(holder_id)) == 1

    async def test_expired_hold_hidden_before_sweep(self, reservations, listed, holder_id, clock):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 1, ttl_seconds=5)
        clock.advance(5)

        assert reservations.get_holds(holder_id) == []


class TestFinalize:

    async def test_finalize_commits_all_holds(self, reservations, ledger, listed, holder_id, mock_event_bus):
        a, _ = await listed(quantity=5)
        b, _ = await listed(quantity=3)
        await reservations.hold(a.product_id, holder_id, 2)
        await reservations.hold(b.product_id, holder_id, 3)

        result = await reservations.finalize(holder_id)

        assert result.success
        assert {line.product_id for line in result.committed} == {a.product_id, b.product_id}
        assert (await ledger.get_stock(a.product_id)).quantity == 3
        record_b = await ledger.get_stock(b.product_id)
        assert record_b.quantity == 0
        assert record_b.status == ProductStatus.UNAVAILABLE
        assert reservations.get_holds(holder_id) == []
        mock_event_bus.assert_event_published("inventory.committed", {"holder_id": holder_id})

    async def test_partial_failure_reports_each_line(self, reservations, ledger, listed, holder_id, clock, mock_event_bus):
        fresh, _ = await listed(quantity=5, product_id="prod_fresh")
        stale, _ = await listed(quantity=5, product_id="prod_stale")
        await reservations.hold(stale.product_id, holder_id, 1, ttl_seconds=10)
        clock.advance(5)
        await reservations.hold(fresh.product_id, holder_id, 1, ttl_seconds=600)
        clock.advance(6)

        result = await reservations.finalize(holder_id)

        assert result.partial
        assert [line.product_id for line in result.committed] == ["prod_fresh"]
        assert [f.product_id for f in result.failed] == ["prod_stale"]
        assert result.failed[0].error_code == "RESERVATION_EXPIRED"
        assert (await ledger.get_stock(stale.product_id)).quantity == 5
        mock_event_bus.assert_event_published("inventory.failed", {"holder_id": holder_id})

    async def test_store_outage_keeps_hold_for_retry(self, reservations, ledger, listed, holder_id, store):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 2)
        store.delay("save_stock", 1.0)

        result = await reservations.finalize(holder_id)

        assert not result.success
        assert result.failed[0].error_code == StoreUnavailableError.error_code
        assert len(reservations.get_holds(holder_id)) == 1

        store.reset()
        retry = await reservations.finalize(holder_id)
        assert retry.success
        assert (await ledger.get_stock(product.product_id)).quantity == 3

    async def test_retry_after_late_store_answer_commits_once(self, reservations, ledger, listed, holder_id, store):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 2)
        store.answer_late("save_stock", 1.0)

        result = await reservations.finalize(holder_id)
        assert not result.success

        store.reset()
        retry = await reservations.finalize(holder_id)

        assert retry.success
        assert [line.product_id for line in retry.committed] == [product.product_id]
        assert (await ledger.get_stock(product.product_id)).quantity == 3
        assert reservations.get_holds(holder_id) == []

    async def test_finalize_empty_cart(self, reservations, holder_id, mock_event_bus):
        result = await reservations.finalize(holder_id)

        assert result.success
        assert result.committed == []
        mock_event_bus.assert_no_events_published("inventory.committed")


class TestRemoveProduct:

    async def test_remove_refused_with_holds(self, reservations, listed, holder_id):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 1)

        with pytest.raises(ProductHasActiveReservationsError):
            await reservations.remove_product(product.product_id)

    async def test_drain_drops_holds(self, reservations, ledger, listed, holder_id):
        product, _ = await listed(quantity=5)
        await reservations.hold(product.product_id, holder_id, 1)

        assert await reservations.remove_product(product.product_id, drain=True) == 1

        assert reservations.get_holds(holder_id) == []
        with pytest.raises(ProductNotFoundError):
            await ledger.get_stock(product.product_id)
