"""
Reservation Manager

Cart holds on top of the inventory ledger. One hold per (product, holder);
a repeated hold replaces the previous quantity instead of stacking.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from .events.publishers import (
    publish_stock_committed,
    publish_stock_expired,
    publish_stock_failed,
    publish_stock_released,
    publish_stock_reserved,
)
from .inventory_ledger import InventoryLedger
from .models import (
    CommitFailure,
    CommitResult,
    CommittedLine,
    Reservation,
    ReservationStatus,
)
from .protocols import (
    InventoryServiceError,
    ReservationExpiredError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)


class ReservationManager:
    """
    Timed holds keyed by (product_id, holder_id).

    Operations for one holder are serialized by a per-holder lock so two
    concurrent holds for the same key cannot both succeed and stack.
    """

    def __init__(
        self,
        ledger: InventoryLedger,
        event_bus=None,
        default_ttl_seconds: int = 900,
        max_ttl_seconds: int = 3600,
    ):
        self.ledger = ledger
        self.event_bus = event_bus
        self.default_ttl_seconds = default_ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds

        self._holds: Dict[str, Dict[str, Reservation]] = {}
        self._holder_locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, holder_id: str) -> asyncio.Lock:
        lock = self._holder_locks.get(holder_id)
        if lock is None:
            lock = asyncio.Lock()
            self._holder_locks[holder_id] = lock
        return lock

    def _drop(self, holder_id: str, product_id: str) -> Optional[Reservation]:
        holds = self._holds.get(holder_id)
        if not holds:
            return None
        reservation = holds.pop(product_id, None)
        if not holds:
            self._holds.pop(holder_id, None)
        return reservation

    async def hold(
        self,
        product_id: str,
        holder_id: str,
        quantity: int,
        ttl_seconds: Optional[float] = None,
    ) -> Reservation:
        """
        Hold ``quantity`` units for a holder's cart.

        All-or-nothing: on failure no hold is created and an existing hold
        for the same product keeps its previous quantity.

        Raises:
            InsufficientStockError: not enough free units
        """
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl > self.max_ttl_seconds:
            logger.debug(f"Clamping hold TTL {ttl}s to {self.max_ttl_seconds}s")
            ttl = self.max_ttl_seconds

        async with self._lock_for(holder_id):
            existing = self._holds.get(holder_id, {}).get(product_id)
            token = await self.ledger.try_reserve(
                product_id,
                quantity,
                holder_id=holder_id,
                ttl_seconds=ttl,
                replaces=existing.reservation_id if existing else None,
            )
            reservation = Reservation(
                reservation_id=token.token_id,
                product_id=product_id,
                holder_id=holder_id,
                quantity=token.quantity,
                status=ReservationStatus.ACTIVE,
                created_at=token.created_at,
                expires_at=token.expires_at,
            )
            self._holds.setdefault(holder_id, {})[product_id] = reservation

        if existing:
            logger.info(f"Holder {holder_id} changed hold on {product_id}: {existing.quantity} -> {quantity}")
        else:
            logger.info(f"Holder {holder_id} holds {quantity} of {product_id}")
        await publish_stock_reserved(self.event_bus, reservation)
        return reservation

    async def release(self, product_id: str, holder_id: str, reason: str = "removed_from_cart") -> bool:
        """Drop a holder's hold on a product; False if there was none"""
        async with self._lock_for(holder_id):
            reservation = self._drop(holder_id, product_id)
            if reservation is None:
                return False
            try:
                await self.ledger.release(reservation.reservation_id)
            except ReservationExpiredError:
                logger.debug(f"Hold {reservation.reservation_id} already expired; nothing to release")
                return False

        await publish_stock_released(self.event_bus, reservation, reason)
        return True

    async def release_all(self, holder_id: str, reason: str = "cart_cleared") -> int:
        """Release every hold of a holder; returns how many were released"""
        released = []
        async with self._lock_for(holder_id):
            for product_id in list(self._holds.get(holder_id, {}).keys()):
                reservation = self._drop(holder_id, product_id)
                try:
                    await self.ledger.release(reservation.reservation_id)
                except ReservationExpiredError:
                    continue
                released.append(reservation)

        for reservation in released:
            await publish_stock_released(self.event_bus, reservation, reason)
        if released:
            logger.info(f"Released {len(released)} hold(s) for holder {holder_id} ({reason})")
        return len(released)

    def get_holds(self, holder_id: str, now: Optional[datetime] = None) -> List[Reservation]:
        """Holder's holds that are still live, ordered by product id"""
        now = now or self.ledger.now()
        return [
            reservation
            for _, reservation in sorted(self._holds.get(holder_id, {}).items())
            if reservation.expires_at > now
            and self.ledger.token_status(reservation.reservation_id) == ReservationStatus.ACTIVE
        ]

    async def remove_product(self, product_id: str, drain: bool = False) -> int:
        """
        Remove a product from the ledger; with ``drain`` its holds are released first.

        Raises:
            ProductHasActiveReservationsError: holds exist and ``drain`` is False
        """
        drained = await self.ledger.remove_product(product_id, drain=drain)
        dropped = []
        for holder_id in list(self._holds.keys()):
            async with self._lock_for(holder_id):
                reservation = self._drop(holder_id, product_id)
                if reservation is not None:
                    dropped.append(reservation)

        for reservation in dropped:
            await publish_stock_released(self.event_bus, reservation, "product_removed")
        return len(drained)

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """
        Release every hold past its expiry; returns the number released.

        Failures for a single hold are logged and retried on the next tick.
        """
        now = now or self.ledger.now()
        expired: List[Reservation] = []

        for holder_id in list(self._holds.keys()):
            async with self._lock_for(holder_id):
                for product_id, reservation in list(self._holds.get(holder_id, {}).items()):
                    if reservation.expires_at > now:
                        continue
                    try:
                        await self.ledger.expire(reservation.reservation_id)
                    except Exception as e:
                        logger.error(
                            f"Failed to expire hold {reservation.reservation_id} on {product_id}: {e}"
                        )
                        continue
                    self._drop(holder_id, product_id)
                    expired.append(reservation.model_copy(update={"status": ReservationStatus.EXPIRED}))

        # Tokens taken directly on the ledger and stale token bookkeeping
        await self.ledger.sweep_expired(now)

        for holder_id in [h for h, lock in self._holder_locks.items() if h not in self._holds and not lock.locked()]:
            self._holder_locks.pop(holder_id, None)

        for reservation in expired:
            await publish_stock_expired(self.event_bus, reservation)
        if expired:
            logger.info(f"Reservation sweep released {len(expired)} expired hold(s)")
        return len(expired)

    async def finalize(self, holder_id: str) -> CommitResult:
        """
        Commit every hold of a holder.

        Lines are committed in product-id order. Each failing line is
        reported with its product id and reason; holds that failed because
        the store was unavailable stay in place for a retry.
        """
        result = CommitResult(holder_id=holder_id)

        async with self._lock_for(holder_id):
            for product_id, reservation in sorted(self._holds.get(holder_id, {}).items()):
                try:
                    await self.ledger.commit(reservation.reservation_id)
                except StoreUnavailableError as e:
                    logger.warning(f"Commit of {product_id} for {holder_id} deferred: {e}")
                    result.failed.append(CommitFailure(
                        product_id=product_id,
                        quantity=reservation.quantity,
                        reason=str(e),
                        error_code=e.error_code,
                    ))
                    continue
                except ReservationExpiredError as e:
                    self._drop(holder_id, product_id)
                    result.failed.append(CommitFailure(
                        product_id=product_id,
                        quantity=reservation.quantity,
                        reason=f"Hold on {product_id} expired; add it to the cart again",
                        error_code=e.error_code,
                    ))
                    continue
                except InventoryServiceError as e:
                    self._drop(holder_id, product_id)
                    result.failed.append(CommitFailure(
                        product_id=product_id,
                        quantity=reservation.quantity,
                        reason=str(e),
                        error_code=e.error_code,
                    ))
                    continue

                self._drop(holder_id, product_id)
                result.committed.append(CommittedLine(
                    product_id=product_id,
                    quantity=reservation.quantity,
                    reservation_id=reservation.reservation_id,
                ))

        if result.committed:
            await publish_stock_committed(self.event_bus, holder_id, result.committed)
        if result.failed:
            logger.warning(
                f"Finalize for {holder_id}: {len(result.failed)} line(s) failed "
                f"({', '.join(f.product_id for f in result.failed)})"
            )
            await publish_stock_failed(self.event_bus, holder_id, result.failed)
        return result
