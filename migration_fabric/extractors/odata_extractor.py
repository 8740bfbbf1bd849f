"""OData entity-set extractor with server-driven pagination."""

import logging
from typing import Any, Dict, Iterator, Optional

from .base import BaseExtractor
from ..odata import ODataClient

logger = logging.getLogger(__name__)

QUERY_OPTIONS = ("$filter", "$select", "$expand", "$orderby", "$top")


class ODataExtractor(BaseExtractor):
    """
    Extractor for an OData entity set.

    Follows next links (``__next`` / ``@odata.nextLink``) until the server
    stops returning one or ``max_records`` is reached.
    """

    def __init__(
        self,
        object_id: str,
        client: ODataClient,
        entity_path: str,
        params: Optional[Dict[str, Any]] = None,
        max_records: Optional[int] = None,
    ):
        """
        Initialize the extractor.

        Args:
            object_id: Migration object being extracted
            client: Client bound to the service
            entity_path: Service path plus entity set
            params: Query options; keys outside ``QUERY_OPTIONS`` are ignored
            max_records: Stop after this many records
        """
        super().__init__(object_id, entity_path, max_records=max_records)
        self.client = client
        self.entity_path = entity_path
        self.params = self._query_params(params or {}, max_records)

    @staticmethod
    def _query_params(params: Dict[str, Any], max_records: Optional[int]) -> Dict[str, str]:
        query = {k: str(v) for k, v in params.items() if k in QUERY_OPTIONS and v not in (None, "")}
        if "$top" in query and max_records is not None:
            query["$top"] = str(min(int(query["$top"]), max_records))
        return query

    def iter_records(self) -> Iterator[Dict[str, Any]]:
        return self.client.iter_records(self.entity_path, self.params or None, max_records=self.max_records)
