"""Data models for the migration fabric."""

from .schema import (
    MISSING,
    EntitySetMetadata,
    EntityType,
    FieldDescriptor,
    FieldInfo,
    MappingRule,
    Property,
    ServiceMetadata,
    coerce_rules,
)
from .migration import (
    MigrationConfig,
    RunState,
    RunStatus,
    new_run_id,
)
from .record import (
    LoadError,
    LoadResult,
    ObjectPhase,
    ObjectRun,
    ObjectStatus,
    ValidationIssue,
)

__all__ = [
    "MISSING",
    "EntitySetMetadata",
    "EntityType",
    "FieldDescriptor",
    "FieldInfo",
    "MappingRule",
    "Property",
    "ServiceMetadata",
    "coerce_rules",
    "MigrationConfig",
    "RunState",
    "RunStatus",
    "new_run_id",
    "LoadError",
    "LoadResult",
    "ObjectPhase",
    "ObjectRun",
    "ObjectStatus",
    "ValidationIssue",
]
