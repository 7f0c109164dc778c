"""
Inventory Service Event Handlers

Handlers for events from other services
"""

import logging
from typing import Any, Callable, Dict, Optional

from ..protocols import ProductNotFoundError, StoreUnavailableError
from ..reservation_manager import ReservationManager
from .models import InventorySubscribedEventType

logger = logging.getLogger(__name__)


def _holder_id(event_data: Dict[str, Any]) -> Optional[str]:
    metadata = event_data.get("metadata") or {}
    return (
        event_data.get("holder_id")
        or event_data.get("user_id")
        or metadata.get("holder_id")
        or metadata.get("user_id")
    )


async def handle_payment_completed(event_data: Dict[str, Any], reservations: ReservationManager) -> None:
    """
    Handle payment.completed event

    Finalize the paying holder's cart. Lines deferred by a store outage
    raise so the message is redelivered; committed lines are not repeated.
    """
    holder_id = _holder_id(event_data)
    if not holder_id:
        logger.warning("payment.completed event missing holder_id/user_id")
        return

    logger.info(f"Processing payment.completed event for holder {holder_id}")
    result = await reservations.finalize(holder_id)

    deferred = [f for f in result.failed if f.error_code == StoreUnavailableError.error_code]
    if deferred:
        raise StoreUnavailableError(
            f"{len(deferred)} line(s) for holder {holder_id} deferred until the store recovers"
        )
    logger.info(
        f"Finalized cart for {holder_id}: {len(result.committed)} committed, {len(result.failed)} failed"
    )


async def handle_order_canceled(event_data: Dict[str, Any], reservations: ReservationManager) -> None:
    """
    Handle order.canceled event

    Release every hold of the holder
    """
    holder_id = _holder_id(event_data)
    if not holder_id:
        logger.warning("order.canceled event missing holder_id/user_id")
        return

    reason = event_data.get("cancellation_reason") or "order_canceled"
    released = await reservations.release_all(holder_id, reason=reason)
    logger.info(f"Released {released} hold(s) for canceled order of {holder_id}")


async def handle_product_deleted(event_data: Dict[str, Any], reservations: ReservationManager) -> None:
    """
    Handle product.deleted event

    Drain active holds and remove the stock record
    """
    product_id = event_data.get("product_id")
    if not product_id:
        logger.warning("product.deleted event missing product_id")
        return

    try:
        drained = await reservations.remove_product(product_id, drain=True)
    except ProductNotFoundError:
        logger.info(f"Product {product_id} has no stock record; nothing to remove")
        return
    logger.info(f"Removed stock for deleted product {product_id} ({drained} hold(s) drained)")


def get_event_handlers(reservations: ReservationManager) -> Dict[str, Callable]:
    """
    Return a mapping of event patterns to handler functions

    Args:
        reservations: ReservationManager that owns the cart holds

    Returns:
        Dict mapping event patterns to handler functions
    """
    return {
        InventorySubscribedEventType.PAYMENT_COMPLETED.value: lambda event: handle_payment_completed(
            event.data, reservations
        ),
        InventorySubscribedEventType.ORDER_CANCELED.value: lambda event: handle_order_canceled(
            event.data, reservations
        ),
        InventorySubscribedEventType.PRODUCT_DELETED.value: lambda event: handle_product_deleted(
            event.data, reservations
        ),
    }
