"""Service layer for the schema migration engine."""

from .schema_registry import SchemaRegistry
from .token_manager import TokenLifecycleManager
from .catalog import PropertyCatalogService, normalize_object_type
from .mapping_store import MappingStateStore

__all__ = [
    "SchemaRegistry",
    "TokenLifecycleManager",
    "PropertyCatalogService",
    "MappingStateStore",
    "normalize_object_type",
]
