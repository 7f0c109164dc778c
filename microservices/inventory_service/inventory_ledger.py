"""
Inventory Ledger

Sole authority over each product's quantity, status and status history.

Mutations for one product are serialized by that product's asyncio.Lock;
different products proceed in parallel. A lock is dropped once nobody
holds or waits on it and the product has no cached record or live token.
Every mutation is written to the store first and applied to the in-memory
view only after the store call returns, so a call that fails or is
cancelled leaves no partial state.
Reservation tokens are ephemeral and live only in memory. A commit is
stored against its token id, so a commit whose store call timed out is
settled from the store on the next access instead of being applied twice.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from .events.publishers import publish_status_changed, publish_stock_restocked
from .history_chain import last_hash, seal_transition
from .models import (
    ALLOWED_TRANSITIONS,
    RESTOCKABLE_STATUSES,
    ProductStatus,
    ReservationStatus,
    ReservationToken,
    StatusTransition,
    StockRecord,
    is_valid_transition,
)
from .protocols import (
    InsufficientStockError,
    InvalidQuantityError,
    InvalidStatusTransitionError,
    ProductHasActiveReservationsError,
    ProductNotFoundError,
    ReservationExpiredError,
    RestockNotAllowedError,
    StockStoreProtocol,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
SOLD_OUT_NOTE = "Sold out"
BACK_IN_STOCK_NOTE = "Back in stock"
INITIAL_NOTE = "Product listed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_positive_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidQuantityError(f"{name} must be a positive integer, got {value!r}")
    return value


@dataclass
class _TokenState:
    token: ReservationToken
    status: ReservationStatus = ReservationStatus.ACTIVE
    closed_at: Optional[datetime] = None
    # Commit write sent but its outcome unknown
    commit_pending: bool = False


class InventoryLedger:
    """
    Quantity/status ledger with reservation tokens.

    Args:
        store: Stock persistence
        event_bus: Optional event bus for status/restock events
        default_ttl_seconds: Token lifetime when the caller gives none
        store_timeout_seconds: Upper bound for every store call
        token_retention_seconds: How long closed token states are remembered
            so late commit/release calls get a precise answer
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        store: StockStoreProtocol,
        event_bus=None,
        default_ttl_seconds: int = 900,
        store_timeout_seconds: float = 5.0,
        token_retention_seconds: int = 86400,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.event_bus = event_bus
        self.default_ttl_seconds = default_ttl_seconds
        self.store_timeout_seconds = store_timeout_seconds
        self.token_retention_seconds = token_retention_seconds
        self._clock = clock or utcnow

        self._records: Dict[str, StockRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._tokens: Dict[str, _TokenState] = {}
        self._active: Dict[str, Dict[str, ReservationToken]] = {}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    @asynccontextmanager
    async def _locked(self, product_id: str):
        lock = self._locks.get(product_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[product_id] = lock
        self._lock_users[product_id] = self._lock_users.get(product_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            users = self._lock_users[product_id] - 1
            if users:
                self._lock_users[product_id] = users
            else:
                del self._lock_users[product_id]
                if product_id not in self._records and product_id not in self._active:
                    self._locks.pop(product_id, None)

    async def _store_call(self, operation: str, product_id: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.store_timeout_seconds)
        except asyncio.TimeoutError:
            # The write may or may not have landed; reload on next access
            self._records.pop(product_id, None)
            logger.error(f"Store {operation} timed out for product {product_id}")
            raise StoreUnavailableError(
                f"Store did not answer {operation} for product {product_id} "
                f"within {self.store_timeout_seconds}s"
            )
        except asyncio.CancelledError:
            self._records.pop(product_id, None)
            raise

    async def _load(self, product_id: str) -> StockRecord:
        record = self._records.get(product_id)
        if record is not None:
            return record
        record = await self._store_call("get_stock", product_id, self.store.get_stock(product_id))
        if record is None:
            raise ProductNotFoundError(product_id)
        await self._settle_pending(product_id)
        self._records[product_id] = record
        return record

    def _has_pending(self, product_id: str) -> bool:
        return any(
            self._tokens[token_id].commit_pending
            for token_id in self._active.get(product_id, {})
        )

    async def _settle_pending(self, product_id: str) -> None:
        """Close tokens whose unconfirmed commit reached the store"""
        now = self.now()
        for token_id in list(self._active.get(product_id, {})):
            state = self._tokens[token_id]
            if not state.commit_pending:
                continue
            applied = await self._store_call("token_applied", product_id, self.store.token_applied(token_id))
            state.commit_pending = False
            if applied:
                self._close(state, ReservationStatus.COMMITTED, now)
                logger.info(f"Token {token_id} for {product_id} found committed in store")

    async def _reload_if_pending(self, product_id: str) -> None:
        if self._has_pending(product_id):
            self._records.pop(product_id, None)
            await self._load(product_id)

    async def _persist(
        self,
        record: StockRecord,
        quantity: int,
        status: ProductStatus,
        transitions: List[StatusTransition],
        now: datetime,
        token_id: Optional[str] = None,
    ) -> Optional[StockRecord]:
        """Store and cache the new state; None if the store already had this token's write"""
        applied = await self._store_call(
            "save_stock",
            record.product_id,
            self.store.save_stock(record.product_id, quantity, status, now, transitions, token_id=token_id),
        )
        if applied is False:
            self._records.pop(record.product_id, None)
            return None
        updated = record.model_copy(update={
            "quantity": quantity,
            "status": status,
            "status_history": list(record.status_history) + list(transitions),
            "updated_at": now,
        })
        self._records[record.product_id] = updated
        return updated

    def _next_transition(
        self,
        record: StockRecord,
        pending: List[StatusTransition],
        status: ProductStatus,
        actor_id: str,
        note: Optional[str],
        now: datetime,
    ) -> StatusTransition:
        history = list(record.status_history) + pending
        timestamp = now
        if history and history[-1].timestamp > timestamp:
            timestamp = history[-1].timestamp
        return seal_transition(record.product_id, status, timestamp, actor_id, note, last_hash(history))

    def _reserved(self, product_id: str) -> int:
        return sum(token.quantity for token in self._active.get(product_id, {}).values())

    def _close(self, state: _TokenState, status: ReservationStatus, now: datetime) -> None:
        state.status = status
        state.closed_at = now
        tokens = self._active.get(state.token.product_id)
        if tokens is not None:
            tokens.pop(state.token.token_id, None)
            if not tokens:
                self._active.pop(state.token.product_id, None)

    def _expire_due(self, product_id: str, now: datetime) -> List[ReservationToken]:
        expired = []
        for token in list(self._active.get(product_id, {}).values()):
            if token.expires_at <= now:
                self._close(self._tokens[token.token_id], ReservationStatus.EXPIRED, now)
                expired.append(token)
        return expired

    # ------------------------------------------------------------------
    # Registration / removal
    # ------------------------------------------------------------------

    async def register_product(
        self,
        product_id: str,
        quantity: int,
        actor_id: str,
        tracking_id: str,
        owner_id: Optional[str] = None,
        note: Optional[str] = INITIAL_NOTE,
    ) -> StockRecord:
        """
        Create the stock record with status ``available`` and its first history entry.

        Raises:
            ProductAlreadyExistsError: stock already registered
            DuplicateTrackingIdError: tracking id already used by another product
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise InvalidQuantityError(f"quantity must be a non-negative integer, got {quantity!r}")

        async with self._locked(product_id):
            now = self.now()
            initial = seal_transition(product_id, ProductStatus.AVAILABLE, now, actor_id, note, last_hash([]))
            record = StockRecord(
                product_id=product_id,
                tracking_id=tracking_id,
                owner_id=owner_id,
                quantity=quantity,
                status=ProductStatus.AVAILABLE,
                status_history=[initial],
                created_at=now,
                updated_at=now,
            )
            await self._store_call("create_stock", product_id, self.store.create_stock(record))
            self._records[product_id] = record

        logger.info(f"Registered product {product_id} with {quantity} unit(s), tracking id {tracking_id}")
        await publish_status_changed(self.event_bus, product_id, initial)
        return record

    async def remove_product(self, product_id: str, drain: bool = False) -> List[ReservationToken]:
        """
        Delete the stock record.

        Active reservations block removal unless ``drain`` is set, in which
        case they are released first and returned.
        """
        async with self._locked(product_id):
            await self._reload_if_pending(product_id)
            await self._load(product_id)
            now = self.now()
            self._expire_due(product_id, now)
            active = list(self._active.get(product_id, {}).values())
            if active and not drain:
                raise ProductHasActiveReservationsError(product_id, len(active))

            await self._store_call("delete_stock", product_id, self.store.delete_stock(product_id))
            for token in active:
                self._close(self._tokens[token.token_id], ReservationStatus.RELEASED, now)
            self._records.pop(product_id, None)

        logger.info(f"Removed product {product_id} (drained {len(active)} reservation(s))")
        return active

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    async def try_reserve(
        self,
        product_id: str,
        quantity: int,
        holder_id: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
        replaces: Optional[str] = None,
    ) -> ReservationToken:
        """
        Claim ``quantity`` units if that many are still free.

        ``replaces`` names an active token of the same product whose units
        count as free for this claim; it is released only if the new claim
        succeeds.

        Raises:
            InsufficientStockError: not enough free units or product not available
            InvalidQuantityError: quantity is not a positive integer
        """
        _require_positive_int("quantity", quantity)
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise InvalidQuantityError(f"ttl_seconds must be positive, got {ttl!r}")

        async with self._locked(product_id):
            await self._reload_if_pending(product_id)
            record = await self._load(product_id)
            now = self.now()
            self._expire_due(product_id, now)

            replaced = None
            if replaces is not None:
                state = self._tokens.get(replaces)
                if (state is not None and state.status == ReservationStatus.ACTIVE
                        and state.token.product_id == product_id):
                    replaced = state

            if record.status != ProductStatus.AVAILABLE:
                raise InsufficientStockError(product_id, quantity, 0, status=record.status)

            free = record.quantity - self._reserved(product_id)
            if replaced is not None:
                free += replaced.token.quantity
            if quantity > free:
                raise InsufficientStockError(product_id, quantity, max(free, 0))

            token = ReservationToken(
                token_id=str(uuid.uuid4()),
                product_id=product_id,
                holder_id=holder_id,
                quantity=quantity,
                created_at=now,
                expires_at=now + timedelta(seconds=ttl),
            )
            if replaced is not None:
                self._close(replaced, ReservationStatus.RELEASED, now)
            self._tokens[token.token_id] = _TokenState(token=token)
            self._active.setdefault(product_id, {})[token.token_id] = token

        logger.debug(f"Reserved {quantity} of {product_id} (token {token.token_id})")
        return token

    async def commit(self, token_id: str) -> StockRecord:
        """
        Turn a live token into a permanent decrement.

        Idempotent for an already committed token.

        Raises:
            ReservationExpiredError: token unknown, released, swept or past expiry
        """
        state = self._tokens.get(token_id)
        if state is None:
            raise ReservationExpiredError(token_id, "unknown")
        product_id = state.token.product_id
        transition = None

        async with self._locked(product_id):
            if state.commit_pending:
                await self._reload_if_pending(product_id)
            if state.status == ReservationStatus.COMMITTED:
                return await self._load(product_id)
            if state.status != ReservationStatus.ACTIVE:
                raise ReservationExpiredError(token_id, state.status.value)

            now = self.now()
            if state.token.expires_at <= now:
                self._close(state, ReservationStatus.EXPIRED, now)
                raise ReservationExpiredError(token_id, "expired")

            record = await self._load(product_id)
            new_quantity = record.quantity - state.token.quantity
            if new_quantity < 0:
                raise InsufficientStockError(product_id, state.token.quantity, record.quantity)

            status = record.status
            transitions = []
            if new_quantity == 0 and record.status == ProductStatus.AVAILABLE:
                transition = self._next_transition(
                    record, [], ProductStatus.UNAVAILABLE, SYSTEM_ACTOR, SOLD_OUT_NOTE, now
                )
                transitions.append(transition)
                status = ProductStatus.UNAVAILABLE

            try:
                persisted = await self._persist(record, new_quantity, status, transitions, now, token_id=token_id)
            except (StoreUnavailableError, asyncio.CancelledError):
                state.commit_pending = True
                raise
            self._close(state, ReservationStatus.COMMITTED, now)
            if persisted is None:
                logger.info(f"Token {token_id} was already committed in store")
                return await self._load(product_id)
            record = persisted

        logger.info(f"Committed {state.token.quantity} of {product_id} (token {token_id}), {record.quantity} left")
        if transition is not None:
            logger.info(f"Product {product_id} sold out")
            await publish_status_changed(self.event_bus, product_id, transition, ProductStatus.AVAILABLE.value)
        return record

    async def release(self, token_id: str) -> None:
        """
        Free a token's units immediately.

        No-op for released or committed tokens.

        Raises:
            ReservationExpiredError: token unknown or already swept
        """
        state = self._tokens.get(token_id)
        if state is None:
            raise ReservationExpiredError(token_id, "unknown")

        async with self._locked(state.token.product_id):
            await self._reload_if_pending(state.token.product_id)
            if state.status in (ReservationStatus.RELEASED, ReservationStatus.COMMITTED):
                return
            if state.status == ReservationStatus.EXPIRED:
                raise ReservationExpiredError(token_id, "expired")
            self._close(state, ReservationStatus.RELEASED, self.now())

        logger.debug(f"Released token {token_id} for {state.token.product_id}")

    async def expire(self, token_id: str) -> bool:
        """Mark an active token expired; True if this call expired it"""
        state = self._tokens.get(token_id)
        if state is None:
            return False
        async with self._locked(state.token.product_id):
            await self._reload_if_pending(state.token.product_id)
            if state.status != ReservationStatus.ACTIVE:
                return False
            self._close(state, ReservationStatus.EXPIRED, self.now())
            return True

    def token_status(self, token_id: str) -> Optional[ReservationStatus]:
        state = self._tokens.get(token_id)
        return state.status if state is not None else None

    async def sweep_expired(self, now: Optional[datetime] = None) -> List[ReservationToken]:
        """
        Expire every active token past ``expires_at`` and forget closed
        tokens older than the retention window.
        """
        now = now or self.now()
        expired: List[ReservationToken] = []

        for product_id in list(self._active.keys()):
            try:
                async with self._locked(product_id):
                    await self._reload_if_pending(product_id)
                    expired.extend(self._expire_due(product_id, now))
            except Exception as e:
                logger.error(f"Sweep failed for product {product_id}: {e}")

        cutoff = now - timedelta(seconds=self.token_retention_seconds)
        stale = [
            token_id for token_id, state in self._tokens.items()
            if state.closed_at is not None and state.closed_at <= cutoff
        ]
        for token_id in stale:
            self._tokens.pop(token_id, None)

        if expired:
            logger.info(f"Ledger sweep expired {len(expired)} token(s)")
        return expired

    # ------------------------------------------------------------------
    # Status / restock
    # ------------------------------------------------------------------

    async def transition_status(
        self,
        product_id: str,
        new_status: ProductStatus,
        actor_id: str,
        note: Optional[str] = None,
    ) -> StatusTransition:
        """
        Append a validated status transition.

        Raises:
            InvalidStatusTransitionError: edge not in the transition table
        """
        new_status = ProductStatus(new_status)

        async with self._locked(product_id):
            record = await self._load(product_id)
            if not is_valid_transition(record.status, new_status):
                allowed = sorted(ALLOWED_TRANSITIONS.get(record.status, frozenset()), key=lambda s: s.value)
                raise InvalidStatusTransitionError(product_id, record.status, new_status, allowed)

            previous = record.status
            now = self.now()
            transition = self._next_transition(record, [], new_status, actor_id, note, now)
            await self._persist(record, record.quantity, new_status, [transition], now)

        logger.info(f"Product {product_id}: {previous.value} -> {new_status.value} by {actor_id}")
        await publish_status_changed(self.event_bus, product_id, transition, previous.value)
        return transition

    async def restock(
        self,
        product_id: str,
        delta: int,
        actor_id: str,
        note: Optional[str] = None,
    ) -> StockRecord:
        """
        Add ``delta`` units.

        A product that was sold out automatically returns to ``available``.

        Raises:
            RestockNotAllowedError: product is preparing, shipped or delivered
        """
        _require_positive_int("delta", delta)
        transition = None

        async with self._locked(product_id):
            record = await self._load(product_id)
            if record.status not in RESTOCKABLE_STATUSES:
                raise RestockNotAllowedError(product_id, record.status)

            now = self.now()
            status = record.status
            transitions = []
            latest = record.status_history[-1] if record.status_history else None
            if (record.status == ProductStatus.UNAVAILABLE and latest is not None
                    and latest.actor_id == SYSTEM_ACTOR and latest.note == SOLD_OUT_NOTE):
                transition = self._next_transition(
                    record, [], ProductStatus.AVAILABLE, SYSTEM_ACTOR, note or BACK_IN_STOCK_NOTE, now
                )
                transitions.append(transition)
                status = ProductStatus.AVAILABLE

            record = await self._persist(record, record.quantity + delta, status, transitions, now)

        logger.info(f"Restocked {product_id} by {delta} (now {record.quantity}) by {actor_id}")
        await publish_stock_restocked(self.event_bus, product_id, delta, record.quantity, actor_id)
        if transition is not None:
            await publish_status_changed(self.event_bus, product_id, transition, ProductStatus.UNAVAILABLE.value)
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_stock(self, product_id: str) -> StockRecord:
        async with self._locked(product_id):
            return await self._load(product_id)

    async def get_stock_many(self, product_ids: List[str]) -> Dict[str, StockRecord]:
        """Known records for the given ids; unknown ids are omitted"""
        found = {pid: self._records[pid] for pid in product_ids if pid in self._records}
        missing = [pid for pid in product_ids if pid not in found]
        if missing:
            try:
                loaded = await asyncio.wait_for(
                    self.store.get_stock_many(missing), timeout=self.store_timeout_seconds
                )
            except asyncio.TimeoutError:
                raise StoreUnavailableError("Store did not answer get_stock_many in time")
            for pid, record in loaded.items():
                if self._has_pending(pid):
                    found[pid] = record
                else:
                    found[pid] = self._records.setdefault(pid, record)
        return found

    async def get_stock_by_tracking_id(self, tracking_id: str) -> Optional[StockRecord]:
        for record in self._records.values():
            if record.tracking_id == tracking_id:
                return record
        record = await self._store_call(
            "get_stock_by_tracking_id", tracking_id, self.store.get_stock_by_tracking_id(tracking_id)
        )
        if record is not None and not self._has_pending(record.product_id):
            record = self._records.setdefault(record.product_id, record)
        return record

    async def tracking_id_exists(self, tracking_id: str) -> bool:
        return await self._store_call(
            "tracking_id_exists", tracking_id, self.store.tracking_id_exists(tracking_id)
        )

    async def get_history(self, product_id: str) -> List[StatusTransition]:
        record = await self.get_stock(product_id)
        return list(record.status_history)

    def reserved_quantity(self, product_id: str, now: Optional[datetime] = None) -> int:
        now = now or self.now()
        return sum(
            token.quantity for token in self._active.get(product_id, {}).values()
            if token.expires_at > now
        )

    def available_for(self, record: StockRecord, now: Optional[datetime] = None) -> int:
        return max(record.quantity - self.reserved_quantity(record.product_id, now), 0)

    async def available_quantity(self, product_id: str) -> Tuple[StockRecord, int]:
        """(record, units still free to reserve)"""
        record = await self.get_stock(product_id)
        return record, self.available_for(record)

    def active_reservations(self, product_id: str) -> List[ReservationToken]:
        return list(self._active.get(product_id, {}).values())
