"""
Inventory Microservice API

Stock ledger, cart holds, tracking and product discovery for the organic
marketplace, with NATS event integration and a scheduled reservation sweep.
"""

import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))
from core.auth_dependencies import Actor, can_manage_stock, require_actor
from core.config import get_settings
from core.logger import setup_service_logger
from core.nats_client import get_event_bus

from .factory import InventoryServices, create_inventory_services
from .history_chain import verify_history
from .models import (
    CommitResult,
    GeoPoint,
    HealthCheckResponse,
    HistoryResponse,
    OrderSummary,
    OrderSummaryRequest,
    ProductCategory,
    ProductFilter,
    ProductStatus,
    RegisterStockRequest,
    Reservation,
    ReserveRequest,
    RestockRequest,
    SearchPage,
    SortKey,
    SortOrder,
    StatusTransition,
    StatusUpdateRequest,
    StockRecord,
    StockResponse,
    TrackingView,
)
from .protocols import (
    InsufficientStockError,
    InvalidQuantityError,
    InvalidSearchError,
    InvalidStatusTransitionError,
    InventoryServiceError,
    ProductAlreadyExistsError,
    ProductHasActiveReservationsError,
    ProductNotFoundError,
    ReservationExpiredError,
    RestockNotAllowedError,
    StoreUnavailableError,
    TrackingIdUnavailableError,
    TrackingNotFoundError,
)

settings = get_settings()
config = settings.inventory

# Configure logging
logger = setup_service_logger(
    "inventory_service",
    level=settings.logging.log_level.upper(),
    log_format=settings.logging.log_format,
    log_file=settings.logging.log_file or None,
)

# Global variables
services: Optional[InventoryServices] = None
event_bus = None  # NATS event bus
scheduler = None  # APScheduler for reservation sweep
SERVICE_PORT = config.service_port
SERVICE_VERSION = "1.0.0"
ANY_STATUS = "any"

ERROR_STATUS = {
    ProductNotFoundError: status.HTTP_404_NOT_FOUND,
    TrackingNotFoundError: status.HTTP_404_NOT_FOUND,
    InsufficientStockError: status.HTTP_409_CONFLICT,
    InvalidStatusTransitionError: status.HTTP_409_CONFLICT,
    ReservationExpiredError: status.HTTP_409_CONFLICT,
    RestockNotAllowedError: status.HTTP_409_CONFLICT,
    ProductHasActiveReservationsError: status.HTTP_409_CONFLICT,
    ProductAlreadyExistsError: status.HTTP_409_CONFLICT,
    InvalidQuantityError: status.HTTP_400_BAD_REQUEST,
    InvalidSearchError: status.HTTP_400_BAD_REQUEST,
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    TrackingIdUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    global services, event_bus, scheduler

    try:
        # Initialize NATS JetStream event bus
        if settings.infrastructure.nats_enabled:
            try:
                event_bus = await get_event_bus(
                    "inventory_service", nats_url=settings.infrastructure.resolved_nats_url
                )
                logger.info("Event bus initialized successfully")
            except Exception as e:
                logger.warning(f"Failed to initialize event bus: {e}. Continuing without events.")
                event_bus = None

        services = await create_inventory_services(settings, event_bus=event_bus)
        logger.info(f"Inventory services ready (store backend: {config.store_backend})")

        # Subscribe to events if event bus is available
        if event_bus:
            try:
                from .events.handlers import get_event_handlers
                from .events.models import InventoryStreamConfig

                handler_map = get_event_handlers(services.reservations)
                for pattern, handler_func in handler_map.items():
                    await event_bus.subscribe_to_events(
                        pattern=pattern,
                        handler=handler_func,
                        durable=f"{InventoryStreamConfig.CONSUMER_PREFIX}-{pattern.replace('.', '-').replace('*', 'all')}-consumer",
                    )
                    logger.info(f"Subscribed to {pattern}")
            except Exception as e:
                logger.warning(f"Failed to subscribe to events: {e}")

        # Start reservation sweep (APScheduler)
        if config.sweep_enabled:
            from apscheduler.schedulers.asyncio import AsyncIOScheduler

            scheduler = AsyncIOScheduler()
            scheduler.add_job(
                services.reservations.sweep_expired,
                'interval',
                seconds=config.sweep_interval_seconds,
                id='reservation_sweep_job',
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            scheduler.start()
            logger.info(f"Reservation sweep scheduled every {config.sweep_interval_seconds}s")

        logger.info(f"Inventory service started on port {SERVICE_PORT}")
        yield

    except Exception as e:
        logger.error(f"Failed to initialize inventory service: {e}")
        raise
    finally:
        if scheduler:
            try:
                scheduler.shutdown(wait=False)
                logger.info("Reservation sweep scheduler stopped")
            except Exception as e:
                logger.error(f"Failed to stop scheduler: {e}")
            scheduler = None

        if event_bus:
            try:
                await event_bus.close()
                logger.info("Inventory event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if services:
            await services.close()
            services = None
            logger.info("Inventory service connections closed")


# Create FastAPI application
app = FastAPI(
    title="Inventory Service",
    description="Stock ledger, cart holds, tracking and discovery for the organic marketplace",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(InventoryServiceError)
async def inventory_error_handler(request: Request, exc: InventoryServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            status_code = ERROR_STATUS[cls]
            break
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    content = {"detail": str(exc), "error_code": exc.error_code}
    if isinstance(exc, InsufficientStockError):
        content["available"] = exc.available
    if isinstance(exc, InvalidStatusTransitionError):
        content["allowed"] = [s.value for s in exc.allowed]
    return JSONResponse(status_code=status_code, content=content)


# ====================
# Dependency Injection
# ====================


async def get_services() -> InventoryServices:
    """Get wired inventory services"""
    if not services:
        raise HTTPException(status_code=503, detail="Inventory service not initialized")
    return services


def _require_stock_manager(actor: Actor, record: Optional[StockRecord] = None) -> None:
    if not can_manage_stock(actor):
        raise HTTPException(status_code=403, detail="Only farmers and admins can manage stock")
    if (record is not None and actor.role == "farmer" and record.owner_id
            and record.owner_id != actor.user_id):
        raise HTTPException(status_code=403, detail="Product belongs to another farmer")


def _require_holder_access(actor: Actor, holder_id: str) -> None:
    if actor.is_internal or actor.role == "admin" or actor.user_id == holder_id:
        return
    raise HTTPException(status_code=403, detail="Cannot act on another shopper's cart")


async def _stock_response(svc: InventoryServices, product_id: str) -> StockResponse:
    record, available = await svc.ledger.available_quantity(product_id)
    return StockResponse(
        record=record,
        reserved_quantity=record.quantity - available,
        available_quantity=available,
    )


# ====================
# Health Check
# ====================


@app.get("/api/v1/inventory/health", response_model=HealthCheckResponse)
@app.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Basic health check"""
    dependencies = {}

    try:
        if services:
            dependencies["store"] = "healthy" if await services.store.health_check() else "unhealthy"
        else:
            dependencies["store"] = "unhealthy"
    except Exception:
        dependencies["store"] = "unhealthy"

    if event_bus is not None:
        dependencies["event_bus"] = "healthy" if event_bus.is_connected else "unhealthy"
    else:
        dependencies["event_bus"] = "not_configured"

    dependencies["scheduler"] = "healthy" if scheduler and scheduler.running else "not_configured"

    overall = "healthy" if all(v in ("healthy", "not_configured") for v in dependencies.values()) else "degraded"

    return HealthCheckResponse(
        status=overall,
        service="inventory_service",
        port=SERVICE_PORT,
        version=SERVICE_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        dependencies=dependencies,
    )


# ====================
# Stock Management
# ====================


@app.post(
    "/api/v1/inventory/products/{product_id}/stock",
    response_model=StockResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_stock(
    product_id: str,
    request: RegisterStockRequest,
    actor: Actor = Depends(require_actor),
    svc: InventoryServices = Depends(get_services),
):
    """Register stock for a catalog product and assign its tracking id"""
    _require_stock_manager(actor)

    product = await svc.catalog.get_product(product_id)
    owner_id = product.owner_id if product else (actor.user_id if actor.role == "farmer" else None)
    if product and actor.role == "farmer" and product.owner_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Product belongs to another farmer")

    await svc.tracking.register_product(
        product_id, request.quantity, actor.user_id, owner_id=owner_id, note=request.note
    )
    return await _stock_response(svc, product_id)


@app.get("/api/v1/inventory/products/{product_id}/stock", response_model=StockResponse)
async def get_stock(product_id: str, svc: InventoryServices = Depends(get_services)):
    """Current quantity, status and free units"""
    return await _stock_response(svc, product_id)


@app.post("/api/v1/inventory/products/{product_id}/restock", response_model=StockResponse)
async def restock(
    product_id: str,
    request: RestockRequest,
    actor: Actor = Depends(require_actor),
    svc: InventoryServices = Depends(get_services),
):
    """Add units to a product"""
    _require_stock_manager(actor, await svc.ledger.get_stock(product_id))
    await svc.ledger.restock(product_id, request.delta, actor.user_id, note=request.note)
    return await _stock_response(svc, product_id)


@app.delete("/api/v1/inventory/products/{product_id}/stock", status_code=status.HTTP_204_NO_CONTENT)
async def remove_stock(
    product_id: str,
    drain: bool = Query(False, description="Release active holds instead of refusing"),
    actor: Actor = Depends(require_actor),
    svc: InventoryServices = Depends(get_services),
):
    """Remove a product's stock record"""
    _require_stock_manager(actor, await svc.ledger.get_stock(product_id))
    await svc.reservations.remove_product(product_id, drain=drain)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ====================
# Status & Tracking
# ====================


@app.get("/api/v1/inventory/products/tracking/{tracking_id}", response_model=TrackingView)
async def get_tracking(tracking_id: str, svc: InventoryServices = Depends(get_services)):
    """Public provenance view: product summary, certificates and status history"""
    return await svc.tracking.get_tracking(tracking_id)


@app.put("/api/v1/inventory/products/{product_id}/status", response_model=StatusTransition)
async def update_status(
    product_id: str,
    request: StatusUpdateRequest,
    actor: Actor = Depends(require_actor),
    svc: InventoryServices = Depends(get_services),
):
    """Apply a validated status transition"""
    _require_stock_manager(actor, await svc.ledger.get_stock(product_id))
    return await svc.ledger.transition_status(product_id, request.status, actor.user_id, note=request.note)


@app.get("/api/v1/inventory/products/{product_id}/history", response_model=HistoryResponse)
async def get_history(product_id: str, svc: InventoryServices = Depends(get_services)):
    """Chronological status history"""
    history = await svc.tracking.get_history(product_id)
    return HistoryResponse(
        product_id=product_id,
        status_history=history,
        verified=verify_history(product_id, history).valid,
    )


# ====================
# Cart Holds
# ====================


@app.post(
    "/api/v1/inventory/products/{product_id}/reserve",
    response_model=Reservation,
    status_code=status.HTTP_201_CREATED,
)
async def reserve(
    product_id: str,
    request: ReserveRequest,
    actor: Actor = Depends(require_actor),
    svc: InventoryServices = Depends(get_services),
):
    """Hold units for a shopper's cart; replaces an earlier hold on the same product"""
    holder_id = request.holder_id or actor.user_id
    _require_holder_access(actor, holder_id)
    return await svc.reservations.hold(product_id, holder_id, request.quantity, ttl_seconds=request.ttl_seconds)


@app.get("/api/v1/inventory/cart/{holder_id}", response_model=List[Reservation])
async def list_holds(
    holder_id: str,
    actor: Actor = Depends(require_actor),
    svc: InventoryServices = Depends(get_services),
):
    """Live holds of a shopper"""
    _require_holder_access(actor, holder_id)
    return svc.reservations.get_holds(holder_id)


@app.delete("/api/v1/inventory/cart/{holder_id}/items/{product_id}")
async def release_hold(
    holder_id: str,
    product_id: str,
    actor: Actor = Depends(require_actor),
    svc: InventoryServices = Depends(get_services),
):
    """Remove a product from the cart and free its units"""
    _require_holder_access(actor, holder_id)
    released = await svc.reservations.release(product_id, holder_id)
    return {"released": released, "product_id": product_id, "holder_id": holder_id}


@app.post("/api/v1/inventory/cart/{holder_id}/finalize", response_model=CommitResult)
async def finalize_cart(
    holder_id: str,
    actor: Actor = Depends(require_actor),
    svc: InventoryServices = Depends(get_services),
):
    """Commit every hold of the shopper; failed lines are listed by product"""
    _require_holder_access(actor, holder_id)
    return await svc.reservations.finalize(holder_id)


# ====================
# Discovery
# ====================


@app.get("/api/v1/inventory/products/nearby", response_model=SearchPage)
async def nearby_products(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(50.0, ge=0),
    category: Optional[ProductCategory] = None,
    limit: int = Query(12, ge=1, le=100),
    offset: int = Query(0, ge=0),
    svc: InventoryServices = Depends(get_services),
):
    """Available products near a point, nearest first"""
    return await svc.discovery.nearby(
        GeoPoint(latitude=lat, longitude=lon),
        radius_km=radius_km,
        category=category,
        limit=limit,
        offset=offset,
    )


@app.get("/api/v1/inventory/products/search", response_model=SearchPage)
async def search_products(
    category: Optional[ProductCategory] = None,
    subcategory: Optional[str] = None,
    owner_id: Optional[str] = None,
    product_status: str = Query(ProductStatus.AVAILABLE.value, alias="status"),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    search: Optional[str] = None,
    certified_only: bool = False,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: Optional[float] = Query(None, ge=0),
    sort: SortKey = SortKey.CREATED_AT,
    order: SortOrder = SortOrder.DESC,
    limit: int = Query(12, ge=1, le=100),
    offset: int = Query(0, ge=0),
    svc: InventoryServices = Depends(get_services),
):
    """Filtered, sorted, paginated product listing"""
    if (lat is None) != (lon is None):
        raise HTTPException(status_code=400, detail="lat and lon must be given together")
    # "any" lists products in every status
    status_filter = None if product_status == ANY_STATUS else product_status
    try:
        product_filter = ProductFilter(
            category=category,
            subcategory=subcategory,
            owner_id=owner_id,
            status=status_filter,
            min_price=min_price,
            max_price=max_price,
            search=search,
            certified_only=certified_only,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    center = GeoPoint(latitude=lat, longitude=lon) if lat is not None else None
    return await svc.discovery.search(
        product_filter,
        center=center,
        radius_km=radius_km,
        sort=sort,
        order=order,
        limit=limit,
        offset=offset,
    )


# ====================
# Checkout
# ====================


@app.post("/api/v1/inventory/orders/summary", response_model=OrderSummary)
async def order_summary(
    request: OrderSummaryRequest,
    svc: InventoryServices = Depends(get_services),
):
    """Fees, total and carbon estimate for a cart"""
    return await svc.order_summary.summarize(request.items, request.destination, request.payment_method)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "microservices.inventory_service.main:app",
        host=config.service_host,
        port=SERVICE_PORT,
        reload=settings.debug,
    )
