"""
Inventory Service Event Publishers

Functions to publish events from inventory service. Publishing is best
effort: failures are logged and reported as False, never raised.
"""

import logging
from typing import Optional, Dict, Any, List

from core.nats_client import Event
from ..models import CommitFailure, CommittedLine, Reservation, StatusTransition
from .models import (
    InventoryEventType,
    HoldEventData,
    CommittedItem,
    StockCommittedEvent,
    StockFailedEvent,
    StatusChangedEvent,
    StockRestockedEvent,
)

logger = logging.getLogger(__name__)

SERVICE_SOURCE = "inventory_service"


async def _publish(event_bus, event_type: InventoryEventType, data: Dict[str, Any], subject: str) -> bool:
    if not event_bus:
        logger.debug(f"Event bus not available, skipping {event_type.value} event")
        return False

    try:
        event = Event(
            event_type=event_type.value,
            source=SERVICE_SOURCE,
            data=data,
            subject=subject,
        )
        published = await event_bus.publish_event(event)
        if published is False:
            logger.warning(f"Event bus rejected {event_type.value} event for {subject}")
            return False
        logger.info(f"Published {event_type.value} event for {subject}")
        return True

    except Exception as e:
        logger.error(f"Failed to publish {event_type.value} event: {e}")
        return False


async def _publish_hold(event_bus, event_type: InventoryEventType, reservation: Reservation, reason: Optional[str]) -> bool:
    event_data = HoldEventData(
        reservation_id=reservation.reservation_id,
        product_id=reservation.product_id,
        holder_id=reservation.holder_id,
        quantity=reservation.quantity,
        expires_at=reservation.expires_at,
        reason=reason,
    )
    return await _publish(event_bus, event_type, event_data.model_dump(mode='json'), reservation.product_id)


async def publish_stock_reserved(event_bus, reservation: Reservation) -> bool:
    """Publish inventory.reserved event"""
    return await _publish_hold(event_bus, InventoryEventType.STOCK_RESERVED, reservation, None)


async def publish_stock_released(event_bus, reservation: Reservation, reason: str = "released") -> bool:
    """Publish inventory.released event"""
    return await _publish_hold(event_bus, InventoryEventType.STOCK_RELEASED, reservation, reason)


async def publish_stock_expired(event_bus, reservation: Reservation) -> bool:
    """Publish inventory.expired event"""
    return await _publish_hold(event_bus, InventoryEventType.STOCK_EXPIRED, reservation, "ttl_elapsed")


async def publish_stock_committed(
    event_bus,
    holder_id: str,
    lines: List[CommittedLine],
    metadata: Optional[Dict[str, Any]] = None
) -> bool:
    """Publish inventory.committed event"""
    event_data = StockCommittedEvent(
        holder_id=holder_id,
        items=[CommittedItem(**line.model_dump()) for line in lines],
        metadata=metadata or {},
    )
    return await _publish(event_bus, InventoryEventType.STOCK_COMMITTED, event_data.model_dump(mode='json'), holder_id)


async def publish_stock_failed(event_bus, holder_id: str, failures: List[CommitFailure]) -> bool:
    """Publish inventory.failed event"""
    event_data = StockFailedEvent(
        holder_id=holder_id,
        items=[failure.model_dump() for failure in failures],
        error_code=failures[0].error_code if failures else None,
        error_message="; ".join(failure.reason for failure in failures) or "commit failed",
    )
    return await _publish(event_bus, InventoryEventType.STOCK_FAILED, event_data.model_dump(mode='json'), holder_id)


async def publish_status_changed(
    event_bus,
    product_id: str,
    transition: StatusTransition,
    previous_status: Optional[str] = None,
) -> bool:
    """Publish inventory.status_changed event"""
    event_data = StatusChangedEvent(
        product_id=product_id,
        previous_status=previous_status,
        new_status=transition.status.value,
        actor_id=transition.actor_id,
        note=transition.note,
        entry_hash=transition.entry_hash,
        timestamp=transition.timestamp,
    )
    return await _publish(event_bus, InventoryEventType.STATUS_CHANGED, event_data.model_dump(mode='json'), product_id)


async def publish_stock_restocked(event_bus, product_id: str, delta: int, quantity: int, actor_id: str) -> bool:
    """Publish inventory.restocked event"""
    event_data = StockRestockedEvent(
        product_id=product_id,
        delta=delta,
        quantity=quantity,
        actor_id=actor_id,
    )
    return await _publish(event_bus, InventoryEventType.STOCK_RESTOCKED, event_data.model_dump(mode='json'), product_id)
