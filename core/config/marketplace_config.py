#!/usr/bin/env python3
"""Marketplace main configuration

Combines all sub-configs for the marketplace microservices.
"""
import os
from dataclasses import dataclass, field

from .infra_config import InfraConfig
from .inventory_config import InventoryConfig
from .logging_config import LoggingConfig


def _bool(val: str) -> bool:
    return val.lower() == "true"


@dataclass
class MarketplaceConfig:
    """Main marketplace configuration with all sub-configs"""

    # Environment
    environment: str = "development"
    debug: bool = False

    # Sub-configurations
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    infrastructure: InfraConfig = field(default_factory=InfraConfig)
    inventory: InventoryConfig = field(default_factory=InventoryConfig)

    @classmethod
    def from_env(cls) -> 'MarketplaceConfig':
        """Load complete configuration from environment"""
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        return cls(
            environment=env,
            debug=_bool(os.getenv("DEBUG", "true" if env == "development" else "false")),
            logging=LoggingConfig.from_env(),
            infrastructure=InfraConfig.from_env(),
            inventory=InventoryConfig.from_env(),
        )
