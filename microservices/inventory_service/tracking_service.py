"""
Tracking Service

Assigns tracking ids at product registration and serves the public
provenance view (status history, certificates, product summary).
"""

import logging
import secrets
import time
from typing import Callable, List, Optional

from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt

from .history_chain import verify_history
from .inventory_ledger import InventoryLedger
from .models import ProductSummary, StatusTransition, StockRecord, TrackingView
from .protocols import (
    CatalogProtocol,
    CertificateSourceProtocol,
    DuplicateTrackingIdError,
    StoreUnavailableError,
    TrackingIdUnavailableError,
    TrackingNotFoundError,
)

logger = logging.getLogger(__name__)

BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
RANDOM_SUFFIX_LENGTH = 6


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def random_suffix(length: int = RANDOM_SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def generate_tracking_id(
    prefix: str = "EKO",
    now_ms: Optional[int] = None,
    suffix: Optional[str] = None,
) -> str:
    """``EKO-<base36 millis>-<6 random base36 chars>``, uppercased"""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix}-{to_base36(now_ms)}-{suffix or random_suffix()}".upper()


class TrackingService:
    """Tracking id assignment and provenance lookups"""

    def __init__(
        self,
        ledger: InventoryLedger,
        catalog: Optional[CatalogProtocol] = None,
        certificates: Optional[CertificateSourceProtocol] = None,
        prefix: str = "EKO",
        max_attempts: int = 5,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.ledger = ledger
        self.catalog = catalog
        self.certificates = certificates
        self.prefix = prefix
        self.max_attempts = max_attempts
        self._id_factory = id_factory or (lambda: generate_tracking_id(self.prefix))

    async def _fresh_id(self) -> str:
        tracking_id = self._id_factory()
        if await self.ledger.tracking_id_exists(tracking_id):
            raise DuplicateTrackingIdError(tracking_id)
        return tracking_id

    async def generate_id(self) -> str:
        """
        Return a tracking id not yet used by any product.

        Raises:
            TrackingIdUnavailableError: every attempt collided
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                retry=retry_if_exception_type(DuplicateTrackingIdError),
            ):
                with attempt:
                    return await self._fresh_id()
        except RetryError as e:
            raise TrackingIdUnavailableError(
                f"No free tracking id after {self.max_attempts} attempts"
            ) from e

    async def register_product(
        self,
        product_id: str,
        quantity: int,
        actor_id: str,
        owner_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> StockRecord:
        """
        Register stock under a fresh tracking id.

        A duplicate reported by the store at insert time (a concurrent
        registration took the same id) is retried with a new id.
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                retry=retry_if_exception_type(DuplicateTrackingIdError),
            ):
                with attempt:
                    tracking_id = await self._fresh_id()
                    kwargs = {"owner_id": owner_id}
                    if note is not None:
                        kwargs["note"] = note
                    return await self.ledger.register_product(
                        product_id, quantity, actor_id, tracking_id, **kwargs
                    )
        except RetryError as e:
            logger.error(f"Could not assign a tracking id to {product_id}")
            raise TrackingIdUnavailableError(
                f"No free tracking id for product {product_id} after {self.max_attempts} attempts"
            ) from e

    async def get_history(self, product_id: str) -> List[StatusTransition]:
        """Chronological copy of the product's status history"""
        return await self.ledger.get_history(product_id)

    async def get_tracking(self, tracking_id: str) -> TrackingView:
        """
        Public provenance view for a tracking id.

        Raises:
            TrackingNotFoundError: no product carries this id
        """
        record = await self.ledger.get_stock_by_tracking_id(tracking_id.upper())
        if record is None:
            raise TrackingNotFoundError(tracking_id)

        product = None
        if self.catalog:
            try:
                product = await self.catalog.get_product(record.product_id)
            except StoreUnavailableError as e:
                logger.warning(f"Catalog unavailable for tracking {record.tracking_id}: {e}")
        owner_id = record.owner_id or (product.owner_id if product else None)

        certificates = []
        if self.certificates:
            certificates = await self.certificates.get_certificates(record.product_id, owner_id)

        history = list(record.status_history)
        verification = verify_history(record.product_id, history)
        if not verification.valid:
            logger.error(
                f"History chain broken for {record.product_id} at entry {verification.broken_at}: "
                f"{verification.reason}"
            )

        return TrackingView(
            tracking_id=record.tracking_id,
            product_id=record.product_id,
            status=record.status,
            farmer_id=owner_id,
            product=ProductSummary.from_product(product) if product else None,
            certificates=certificates,
            status_history=history,
            history_verified=verification.valid,
        )
