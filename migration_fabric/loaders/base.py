"""Base loader interface for target services."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type
import logging
import threading
import time

from ..errors import AuthenticationError, CancelledError, CircuitOpenError, FabricError
from ..models.record import LoadResult

logger = logging.getLogger(__name__)


class BaseLoader(ABC):
    """
    Base class for data loaders.

    Records are sent one at a time in batches. A rejected record is noted
    as ``{index, message, statusCode}`` and the batch continues; errors in
    ``abort_on`` mean no further record can succeed, so the remaining
    records are marked failed and loading stops.
    """

    abort_on: Tuple[Type[Exception], ...] = (AuthenticationError, CircuitOpenError)

    def __init__(
        self,
        object_id: str,
        batch_size: int = 500,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the loader.

        Args:
            object_id: Migration object being loaded
            batch_size: Number of records per batch
            cancel_event: Checked between batches
        """
        self.object_id = object_id
        self.batch_size = batch_size
        self.cancel_event = cancel_event

    @abstractmethod
    def load_record(self, record: Dict[str, Any]) -> Any:
        """
        Load a single record to the target.

        Args:
            record: Target-shaped record

        Returns:
            The target's response body
        """
        pass

    def _batches(self, records: List[Dict[str, Any]]) -> Iterator[Tuple[int, List[Dict[str, Any]]]]:
        for i in range(0, len(records), self.batch_size):
            yield i, records[i:i + self.batch_size]

    def load(self, records: List[Dict[str, Any]]) -> LoadResult:
        """
        Load all records.

        Args:
            records: Target-shaped records

        Returns:
            LoadResult with counts, capped error details and timing
        """
        result = LoadResult(record_count=len(records), batch_size=self.batch_size)
        start = time.monotonic()
        logger.info(f"Loading {len(records)} records for {self.object_id} in batches of {self.batch_size}...")

        try:
            for offset, batch in self._batches(records):
                if self.cancel_event is not None and self.cancel_event.is_set():
                    raise CancelledError("Load cancelled", {"objectId": self.object_id, "index": offset})
                result.batches += 1
                if not self._load_batch(batch, offset, result, len(records)):
                    break
        finally:
            result.duration_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            f"Loaded {result.success_count}/{result.record_count} records for {self.object_id} "
            f"in {result.duration_ms}ms ({result.error_count} errors)"
        )
        return result

    def _load_batch(self, batch: List[Dict[str, Any]], offset: int, result: LoadResult, total: int) -> bool:
        """Load one batch; returns False when loading must stop."""
        for position, record in enumerate(batch):
            index = offset + position
            try:
                self.load_record(record)
                result.success_count += 1
            except self.abort_on as e:
                logger.error(f"Batch {result.batches} failed for {self.object_id}: {e}")
                result.batch_error = str(e)
                for remaining in range(index, total):
                    result.add_error(remaining, str(e), getattr(e, "status_code", None))
                return False
            except CancelledError:
                raise
            except FabricError as e:
                result.add_error(index, str(e), e.status_code)
                logger.debug(f"Record {index} of {self.object_id} rejected: {e}")
            except Exception as e:
                result.add_error(index, str(e))
                logger.error(f"Failed to load record {index} of {self.object_id}: {e}")
        return True

    def validate_connection(self) -> bool:
        """Validate the connection to the target service."""
        return True
