#!/usr/bin/env python3
"""Modular configuration system for the marketplace services

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- inventory_config: Inventory ledger, reservations, checkout fees
- logging_config: Logging configuration
- marketplace_config: Main configuration combining the above
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig
from .infra_config import InfraConfig
from .inventory_config import InventoryConfig
from .marketplace_config import MarketplaceConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = MarketplaceConfig.from_env()

def get_settings() -> MarketplaceConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> MarketplaceConfig:
    """Reload settings from environment"""
    global settings
    settings = MarketplaceConfig.from_env()
    return settings

__all__ = [
    'MarketplaceConfig',
    'get_settings',
    'reload_settings',
    'settings',
    'LoggingConfig',
    'InfraConfig',
    'InventoryConfig',
]
