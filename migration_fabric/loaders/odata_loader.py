"""OData loader posting records to an entity set."""

import logging
import threading
from typing import Any, Dict, Optional

from .base import BaseLoader
from ..odata import CircuitState, ODataClient

logger = logging.getLogger(__name__)


class ODataLoader(BaseLoader):
    """Create records in a target entity set with one POST per record."""

    def __init__(
        self,
        object_id: str,
        client: ODataClient,
        entity_path: str,
        batch_size: int = 500,
        cancel_event: Optional[threading.Event] = None,
    ):
        super().__init__(object_id, batch_size=batch_size, cancel_event=cancel_event)
        self.client = client
        self.entity_path = entity_path

    def load_record(self, record: Dict[str, Any]) -> Any:
        return self.client.post(self.entity_path, record)

    def validate_connection(self) -> bool:
        return self.client.get_circuit_breaker_stats()["state"] != CircuitState.OPEN
