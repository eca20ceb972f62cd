"""Data models for the schema migration engine."""

from .schema import (
    MappingCategory,
    PropertyFilter,
    PropertyDefinition,
    PropertyMapping,
    MappingEntry,
)
from .session import (
    Tenant,
    TenantSession,
    TokenState,
)
from .migration import (
    MigrationConfig,
    MigrationBatchResult,
    PropertyOutcome,
    PropertyResult,
)

__all__ = [
    "MappingCategory",
    "PropertyFilter",
    "PropertyDefinition",
    "PropertyMapping",
    "MappingEntry",
    "Tenant",
    "TenantSession",
    "TokenState",
    "MigrationConfig",
    "MigrationBatchResult",
    "PropertyOutcome",
    "PropertyResult",
]
