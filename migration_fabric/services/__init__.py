"""Service layer for the migration pipeline."""

from .checkpoint import CheckpointManager
from .field_mapping import CONVERTERS, FieldMappingEngine
from .quality import DataQualityChecker
from .reconciliation import ReconciliationEngine, make_key
from .validator import RecordValidator, ValidationReport, ValidationRule, ValidationRules

__all__ = [
    "CheckpointManager",
    "CONVERTERS",
    "FieldMappingEngine",
    "DataQualityChecker",
    "ReconciliationEngine",
    "make_key",
    "RecordValidator",
    "ValidationReport",
    "ValidationRule",
    "ValidationRules",
]
