"""Live extract/load operations for migration objects."""

import logging
import threading
import time
from typing import Any, Dict, List, Optional

from .client_factory import ClientFactory, load_object_map
from .dictionary import ConnectionPool
from .errors import ConfigurationError, FabricError
from .extractors import ExtractionResult, ODataExtractor, TableExtractor
from .loaders import ODataLoader
from .models.record import LoadResult

logger = logging.getLogger(__name__)

CONNECTION_TEST_SERVICE = "/sap/opu/odata/sap/API_BUSINESS_PARTNER"


class LiveConnector:
    """
    Resolve migration object ids to services and move records through them.

    Each object maps to ``{system, service, entitySet, dialect}``; objects
    marked ``transport: rfc`` are read from a dictionary table instead and
    need a dictionary pool.
    """

    def __init__(
        self,
        factory: ClientFactory,
        dictionary_pool: Optional[ConnectionPool] = None,
        objects: Optional[Dict[str, Dict[str, Any]]] = None,
        batch_size: int = 500,
        max_records: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the connector.

        Args:
            factory: Client factory with the source/target systems registered
            dictionary_pool: Pool used for ``rfc`` transport objects
            objects: Object id -> mapping table (bundled table by default)
            batch_size: Default load batch size
            max_records: Default record cap per extraction (read to exhaustion when None)
            cancel_event: Forwarded to loaders
        """
        self.factory = factory
        self.dictionary_pool = dictionary_pool
        self.objects = dict(objects) if objects is not None else load_object_map()["objects"]
        self.batch_size = batch_size
        self.max_records = max_records
        self.cancel_event = cancel_event
        self._extraction_stats: Dict[str, Dict[str, Any]] = {}

    def has_mapping(self, object_id: str) -> bool:
        return object_id in self.objects

    def get_mapping(self, object_id: str) -> Optional[Dict[str, Any]]:
        mapping = self.objects.get(object_id)
        return dict(mapping) if mapping else None

    def list_objects(self, system: Optional[str] = None) -> List[str]:
        return [oid for oid, m in self.objects.items() if system is None or m.get("system") == system]

    def _require_mapping(self, object_id: str) -> Dict[str, Any]:
        mapping = self.objects.get(object_id)
        if not mapping:
            raise ConfigurationError(f"No live service mapping for {object_id}", {"objectId": object_id})
        return mapping

    def extract(
        self,
        object_id: str,
        params: Optional[Dict[str, Any]] = None,
        max_records: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Extract every record of an object.

        Args:
            object_id: Migration object id
            params: OData query options (``$filter``, ``$select``, ``$top``, ``$expand``)
            max_records: Record cap; replaces the connector default when given

        Returns:
            List of source records

        Raises:
            ConfigurationError: For unmapped objects, or table objects without a pool
        """
        return self.extract_result(object_id, params, max_records).records

    def extract_result(
        self,
        object_id: str,
        params: Optional[Dict[str, Any]] = None,
        max_records: Optional[int] = None,
    ) -> ExtractionResult:
        """Like ``extract`` but returns the full ExtractionResult."""
        mapping = self._require_mapping(object_id)
        cap = self.max_records if max_records is None else max_records

        if mapping.get("transport") == "rfc":
            extractor = self._table_extractor(object_id, mapping, cap)
        else:
            client = self.factory.get_client(mapping["system"], mapping["service"], dialect=mapping.get("dialect"))
            extractor = ODataExtractor(
                object_id,
                client,
                f"{client.service_path}/{mapping['entitySet']}",
                params=params,
                max_records=cap,
            )

        result = extractor.extract()
        self._extraction_stats[object_id] = result.stats()
        return result

    def _table_extractor(self, object_id: str, mapping: Dict[str, Any], cap: Optional[int]) -> TableExtractor:
        if self.dictionary_pool is None:
            raise ConfigurationError(
                f"{object_id} is served by the dictionary transport but no dictionary pool is configured",
                {"objectId": object_id, "field": "dictionary"},
            )
        table = mapping.get("table") or mapping["entitySet"]
        return TableExtractor(object_id, self.dictionary_pool, table, max_records=cap)

    def load(
        self,
        object_id: str,
        records: List[Dict[str, Any]],
        batch_size: Optional[int] = None,
    ) -> LoadResult:
        """
        Load records into the object's entity set.

        Args:
            object_id: Migration object id
            records: Target-shaped records
            batch_size: Records per batch (connector default when omitted)

        Returns:
            LoadResult; per-record failures are recorded, not raised
        """
        mapping = self._require_mapping(object_id)
        if mapping.get("transport") == "rfc":
            raise ConfigurationError(
                f"{object_id} is served by the dictionary transport and cannot be loaded",
                {"objectId": object_id},
            )

        client = self.factory.get_client(mapping["system"], mapping["service"], dialect=mapping.get("dialect"))
        loader = ODataLoader(
            object_id,
            client,
            f"{client.service_path}/{mapping['entitySet']}",
            batch_size=batch_size or self.batch_size,
            cancel_event=self.cancel_event,
        )
        return loader.load(records)

    def test_connection(self, system: str) -> Dict[str, Any]:
        """Probe a registered system with a lightweight metadata request."""
        if system not in self.factory.systems:
            return {"status": "error", "system": system, "message": f"Unknown system: {system}"}

        try:
            client = self.factory.create_client(self.factory.systems[system])
            start = time.monotonic()
            client.get_metadata(CONNECTION_TEST_SERVICE)
            latency = int((time.monotonic() - start) * 1000)
            logger.info(f"Connection to {system} OK ({latency}ms)")
            return {"status": "connected", "system": system, "latencyMs": latency}
        except FabricError as e:
            logger.error(f"Connection test failed for {system}: {e}")
            return {"status": "error", "system": system, "message": str(e), "code": e.kind}

    def get_extraction_stats(self) -> Dict[str, Dict[str, Any]]:
        return {k: dict(v) for k, v in self._extraction_stats.items()}
