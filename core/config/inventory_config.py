#!/usr/bin/env python3
"""Inventory service configuration

Reservation timing, store access, checkout fees and tracking-id settings.
"""
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation


def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default

def _decimal(val: str, default: str) -> Decimal:
    try:
        return Decimal(val) if val else Decimal(default)
    except InvalidOperation:
        return Decimal(default)


@dataclass
class InventoryConfig:
    """Inventory ledger, reservations and checkout settings"""

    service_name: str = "inventory_service"
    service_host: str = "0.0.0.0"
    service_port: int = 8252

    # Persistence: "postgres" or "memory"
    store_backend: str = "memory"
    store_timeout_seconds: float = 5.0

    # Reservations
    default_hold_ttl_seconds: int = 900
    max_hold_ttl_seconds: int = 3600
    sweep_interval_seconds: int = 30
    token_retention_seconds: int = 86400
    sweep_enabled: bool = True

    # External catalog
    catalog_service_url: str = "http://localhost:8253"
    catalog_timeout_seconds: float = 10.0

    # Checkout
    currency: str = "PLN"
    delivery_fee: Decimal = Decimal("15.00")
    transfer_fee: Decimal = Decimal("5.00")
    card_fee_rate: Decimal = Decimal("0.02")
    piece_weight_kg: Decimal = Decimal("1")

    # Tracking ids
    tracking_id_prefix: str = "EKO"
    tracking_id_max_attempts: int = 5

    @classmethod
    def from_env(cls) -> 'InventoryConfig':
        """Load inventory config from environment"""
        return cls(
            service_name=os.getenv("INVENTORY_SERVICE_NAME", "inventory_service"),
            service_host=os.getenv("INVENTORY_SERVICE_HOST", "0.0.0.0"),
            service_port=_int(os.getenv("INVENTORY_SERVICE_PORT", "8252"), 8252),

            store_backend=os.getenv("INVENTORY_STORE_BACKEND", "memory").lower(),
            store_timeout_seconds=_float(os.getenv("INVENTORY_STORE_TIMEOUT", "5.0"), 5.0),

            default_hold_ttl_seconds=_int(os.getenv("INVENTORY_HOLD_TTL", "900"), 900),
            max_hold_ttl_seconds=_int(os.getenv("INVENTORY_MAX_HOLD_TTL", "3600"), 3600),
            sweep_interval_seconds=_int(os.getenv("INVENTORY_SWEEP_INTERVAL", "30"), 30),
            token_retention_seconds=_int(os.getenv("INVENTORY_TOKEN_RETENTION", "86400"), 86400),
            sweep_enabled=_bool(os.getenv("INVENTORY_SWEEP_ENABLED", "true")),

            catalog_service_url=os.getenv("CATALOG_SERVICE_URL", "http://localhost:8253"),
            catalog_timeout_seconds=_float(os.getenv("CATALOG_TIMEOUT", "10.0"), 10.0),

            currency=os.getenv("CHECKOUT_CURRENCY", "PLN"),
            delivery_fee=_decimal(os.getenv("CHECKOUT_DELIVERY_FEE", ""), "15.00"),
            transfer_fee=_decimal(os.getenv("CHECKOUT_TRANSFER_FEE", ""), "5.00"),
            card_fee_rate=_decimal(os.getenv("CHECKOUT_CARD_FEE_RATE", ""), "0.02"),
            piece_weight_kg=_decimal(os.getenv("CHECKOUT_PIECE_WEIGHT_KG", ""), "1"),

            tracking_id_prefix=os.getenv("TRACKING_ID_PREFIX", "EKO"),
            tracking_id_max_attempts=_int(os.getenv("TRACKING_ID_MAX_ATTEMPTS", "5"), 5),
        )
