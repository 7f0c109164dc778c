"""
Inventory Service

Stock ledger and discovery engine for the organic marketplace.

Features:
- Per-product quantity and status ledger with hash-chained history
- Timed cart holds with background expiry sweep
- Tracking ids and public provenance view
- Nearby/search discovery with great-circle distance
- Checkout fees and carbon-footprint estimate
- Event-driven integration with payment, order and catalog services
"""

__version__ = "1.0.0"
