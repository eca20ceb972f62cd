"""Service wiring for the API."""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from ..models.migration import MigrationConfig
from ..orchestrator import PropertyMigrationOrchestrator
from ..services.catalog import PropertyCatalogService
from ..services.mapping_store import MappingStateStore
from ..services.schema_registry import SchemaRegistry
from ..services.token_manager import TokenLifecycleManager
from ..stores import ProfileStore, create_profile_store

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """The four engine components plus their shared collaborators."""
    config: MigrationConfig
    store: ProfileStore
    registry: SchemaRegistry
    tokens: TokenLifecycleManager
    catalog: PropertyCatalogService
    mappings: MappingStateStore
    orchestrator: PropertyMigrationOrchestrator

    @classmethod
    def from_config(cls, config: MigrationConfig, store: Optional[ProfileStore] = None) -> "Services":
        store = store or create_profile_store(config)
        orchestrator = PropertyMigrationOrchestrator.from_config(config, store)
        return cls(
            config=config,
            store=store,
            registry=orchestrator.registry,
            tokens=orchestrator.tokens,
            catalog=orchestrator.catalog,
            mappings=orchestrator.mappings,
            orchestrator=orchestrator,
        )


@lru_cache
def get_services() -> Services:
    """Get the process-wide services, built once from the environment."""
    config = MigrationConfig.from_env()
    logger.info(f"Starting services with config: {config.to_dict()}")
    return Services.from_config(config)
