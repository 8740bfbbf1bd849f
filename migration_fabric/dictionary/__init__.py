"""Dictionary access: connection pooling, table reads and relationship discovery."""

from .fixtures import FixtureConnection, create_fixture_pool
from .gateway import GatewayConnection
from .intelligence import TableIntelligence
from .pool import ConnectionPool
from .table_reader import call_function, read_table, sanitize_literal, split_where_clause

__all__ = [
    "FixtureConnection",
    "create_fixture_pool",
    "GatewayConnection",
    "TableIntelligence",
    "ConnectionPool",
    "call_function",
    "read_table",
    "sanitize_literal",
    "split_where_clause",
]
