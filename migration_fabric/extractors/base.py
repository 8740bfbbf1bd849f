"""Base extractor interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional
from datetime import datetime
import logging
import time

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Result of an extraction operation."""
    object_id: str
    source: str
    records: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: int = 0
    truncated: bool = False

    @property
    def record_count(self) -> int:
        return len(self.records)

    def stats(self) -> Dict[str, Any]:
        """Extraction statistics without the records."""
        return {
            "recordCount": self.record_count,
            "durationMs": self.duration_ms,
            "timestamp": (self.completed_at or datetime.utcnow()).isoformat(),
            "source": self.source,
            "truncated": self.truncated,
        }

    def to_dict(self, include_records: bool = True) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = self.stats()
        if include_records:
            result["records"] = self.records
        return result


class BaseExtractor(ABC):
    """
    Base class for extractors.

    Subclasses yield records lazily from ``iter_records``; batching, the
    record cap and timing live here.
    """

    def __init__(self, object_id: str, source: str, max_records: Optional[int] = None):
        """
        Initialize the extractor.

        Args:
            object_id: Migration object being extracted
            source: Human-readable location of the data (entity path, table)
            max_records: Stop after this many records
        """
        self.object_id = object_id
        self.source = source
        self.max_records = max_records

    @abstractmethod
    def iter_records(self) -> Iterator[Dict[str, Any]]:
        """Yield source records one at a time."""
        pass

    def stream(self, batch_size: int = 500) -> Iterator[List[Dict[str, Any]]]:
        """
        Stream records in batches.

        Args:
            batch_size: Size of each batch

        Yields:
            Lists of at most ``batch_size`` records
        """
        batch: List[Dict[str, Any]] = []
        for record in self._capped(self.iter_records()):
            batch.append(record)
            if len(batch) >= batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def _capped(self, records: Iterator[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
        if self.max_records is not None and self.max_records <= 0:
            return
        for count, record in enumerate(records, start=1):
            yield record
            if self.max_records is not None and count >= self.max_records:
                return

    def extract(self) -> ExtractionResult:
        """
        Extract all records (up to ``max_records``).

        Returns:
            ExtractionResult containing the records and timing
        """
        logger.info(f"Extracting {self.object_id} from {self.source}...")
        result = ExtractionResult(object_id=self.object_id, source=self.source, started_at=datetime.utcnow())
        start = time.monotonic()

        try:
            result.records = list(self._capped(self.iter_records()))
        except Exception as e:
            logger.error(f"Extraction failed for {self.object_id}: {e}")
            raise

        result.completed_at = datetime.utcnow()
        result.duration_ms = int((time.monotonic() - start) * 1000)
        result.truncated = self.max_records is not None and result.record_count >= self.max_records
        if result.truncated:
            logger.warning(f"{self.object_id}: stopped at the record cap ({self.max_records}); source may hold more")

        logger.info(f"Extracted {result.record_count} records for {self.object_id} in {result.duration_ms}ms")
        return result
