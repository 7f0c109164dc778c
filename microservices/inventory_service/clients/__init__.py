"""
Inventory Service Clients Module

HTTP clients for synchronous communication with other services
"""

from .catalog_client import CatalogClient

__all__ = [
    "CatalogClient",
]
