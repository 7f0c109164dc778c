#!/usr/bin/env python3
"""
Core Module for Marketplace Microservices

Shared infrastructure used by the services:

COMPONENTS:
    - config/: environment-driven configuration dataclasses
    - logger.py: service logger setup
    - nats_client.py: NATS JetStream event bus
    - auth_dependencies.py: FastAPI identity dependencies

USAGE:
    from core.config import get_settings
    from core.logger import setup_service_logger

    settings = get_settings()
    logger = setup_service_logger("inventory_service", level=settings.logging.log_level)
"""

__version__ = "2.0.0"
