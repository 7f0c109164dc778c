"""
Shared Test Fixtures

Centralized factories used across all test layers.

Structure:
    - common.py: Base ID generators, timestamps, fake clock
    - inventory_fixtures.py: Products, locations, certificates
"""

# Common utilities
from .common import (
    FakeClock,
    make_farmer_id,
    make_holder_id,
    make_product_id,
    make_timestamp,
)

# Inventory factories
from .inventory_fixtures import (
    GDANSK,
    KRAKOW,
    LODZ,
    WARSAW,
    make_certificate,
    make_location,
    make_product,
)

__all__ = [
    "FakeClock",
    "make_farmer_id",
    "make_holder_id",
    "make_product_id",
    "make_timestamp",
    "GDANSK",
    "KRAKOW",
    "LODZ",
    "WARSAW",
    "make_certificate",
    "make_location",
    "make_product",
]
