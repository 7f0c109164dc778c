"""
Inventory Service Factory

Factory functions for creating service instances with real dependencies.
This is the ONLY place that imports I/O-dependent modules.

Usage:
    from .factory import create_inventory_services
    services = await create_inventory_services(settings, event_bus)
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from core.config import InventoryConfig, MarketplaceConfig

from .carbon_accountant import CarbonAccountant
from .discovery_service import DiscoveryService
from .geo_index import GeoIndex
from .inventory_ledger import InventoryLedger
from .order_summary import OrderSummaryService
from .protocols import CatalogProtocol, CertificateSourceProtocol, StockStoreProtocol
from .reservation_manager import ReservationManager
from .tracking_service import TrackingService


@dataclass
class InventoryServices:
    """Wired service graph"""
    config: InventoryConfig
    store: StockStoreProtocol
    catalog: CatalogProtocol
    certificates: Optional[CertificateSourceProtocol]
    ledger: InventoryLedger
    reservations: ReservationManager
    tracking: TrackingService
    discovery: DiscoveryService
    order_summary: OrderSummaryService
    carbon: CarbonAccountant
    closeables: List = None

    async def close(self) -> None:
        for resource in self.closeables or []:
            await resource.close()


def build_inventory_services(
    config: InventoryConfig,
    store: StockStoreProtocol,
    catalog: CatalogProtocol,
    certificates: Optional[CertificateSourceProtocol] = None,
    event_bus=None,
    clock: Optional[Callable[[], datetime]] = None,
    tracking_id_factory: Optional[Callable[[], str]] = None,
) -> InventoryServices:
    """
    Wire the services from already-constructed collaborators.

    No I/O happens here; tests pass in-memory or mock collaborators.
    """
    geo_index = GeoIndex()
    carbon = CarbonAccountant()

    ledger = InventoryLedger(
        store,
        event_bus=event_bus,
        default_ttl_seconds=config.default_hold_ttl_seconds,
        store_timeout_seconds=config.store_timeout_seconds,
        token_retention_seconds=config.token_retention_seconds,
        clock=clock,
    )
    reservations = ReservationManager(
        ledger,
        event_bus=event_bus,
        default_ttl_seconds=config.default_hold_ttl_seconds,
        max_ttl_seconds=config.max_hold_ttl_seconds,
    )
    tracking = TrackingService(
        ledger,
        catalog=catalog,
        certificates=certificates,
        prefix=config.tracking_id_prefix,
        max_attempts=config.tracking_id_max_attempts,
        id_factory=tracking_id_factory,
    )
    discovery = DiscoveryService(
        catalog,
        ledger,
        geo_index=geo_index,
        catalog_timeout_seconds=config.catalog_timeout_seconds,
    )
    order_summary = OrderSummaryService.from_config(config, catalog, carbon=carbon, geo_index=geo_index)

    return InventoryServices(
        config=config,
        store=store,
        catalog=catalog,
        certificates=certificates,
        ledger=ledger,
        reservations=reservations,
        tracking=tracking,
        discovery=discovery,
        order_summary=order_summary,
        carbon=carbon,
        closeables=[],
    )


async def create_inventory_services(
    settings: MarketplaceConfig,
    event_bus=None,
) -> InventoryServices:
    """
    Create the services with real dependencies.

    Imports the PostgreSQL repository and HTTP catalog client here (not at
    module level). Use this in production, NOT in tests.
    """
    config = settings.inventory
    closeables = []

    if config.store_backend == "postgres":
        from core.postgres_client import PostgresClient
        from .inventory_repository import InventoryRepository

        infra = settings.infrastructure
        db = PostgresClient(
            config.service_name,
            dsn=infra.postgres_dsn,
            min_size=infra.postgres_min_pool,
            max_size=infra.postgres_max_pool,
            command_timeout=config.store_timeout_seconds,
        )
        store = InventoryRepository(db)
    else:
        from .memory_repository import InMemoryStockRepository

        store = InMemoryStockRepository()

    await store.initialize()
    closeables.append(store)

    if config.catalog_service_url:
        from .clients.catalog_client import CatalogClient

        catalog = CatalogClient(config.catalog_service_url, timeout=config.catalog_timeout_seconds)
        certificates = catalog
        closeables.append(catalog)
    else:
        from .memory_repository import InMemoryCatalog, InMemoryCertificateSource

        catalog = InMemoryCatalog()
        certificates = InMemoryCertificateSource()

    services = build_inventory_services(config, store, catalog, certificates, event_bus=event_bus)
    services.closeables = closeables
    return services
