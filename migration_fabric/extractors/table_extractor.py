"""Dictionary table extractor for objects served by the function-call path."""

import logging
from typing import Any, Dict, Iterator, List, Optional

from .base import BaseExtractor
from ..dictionary import ConnectionPool, read_table

logger = logging.getLogger(__name__)


class TableExtractor(BaseExtractor):
    """
    Extractor reading a table through the table-read function.

    Rows are fetched in pages using the row-skip and row-count parameters,
    each page on a pooled connection.
    """

    def __init__(
        self,
        object_id: str,
        pool: ConnectionPool,
        table: str,
        fields: Optional[List[str]] = None,
        where: Optional[str] = None,
        max_records: Optional[int] = None,
        page_size: int = 1000,
    ):
        super().__init__(object_id, table, max_records=max_records)
        self.pool = pool
        self.table = table
        self.fields = fields
        self.where = where
        self.page_size = page_size

    def extract_batch(self, offset: int = 0, limit: int = 1000) -> List[Dict[str, Any]]:
        """
        Read one page of rows.

        Args:
            offset: Rows to skip
            limit: Maximum rows to read

        Returns:
            List of rows keyed by field name
        """
        with self.pool.connection() as conn:
            return read_table(conn, self.table, fields=self.fields, where=self.where, max_rows=limit, row_skip=offset)

    def iter_records(self) -> Iterator[Dict[str, Any]]:
        offset = 0
        while True:
            batch = self.extract_batch(offset=offset, limit=self.page_size)
            yield from batch
            offset += len(batch)
            if len(batch) < self.page_size:
                break
