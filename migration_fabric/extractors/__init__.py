"""Record extractors for OData services and dictionary tables."""

from .base import BaseExtractor, ExtractionResult
from .odata_extractor import ODataExtractor
from .table_extractor import TableExtractor

__all__ = [
    "BaseExtractor",
    "ExtractionResult",
    "ODataExtractor",
    "TableExtractor",
]
