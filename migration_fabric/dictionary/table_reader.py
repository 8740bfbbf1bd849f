"""Function-call primitives: generic calls and the table-read protocol."""

import logging
from typing import Any, Dict, List, Optional

from ..errors import DictionaryCallError, FabricError

logger = logging.getLogger(__name__)

READ_TABLE_FUNCTION = "RFC_READ_TABLE"
OPTION_LINE_LENGTH = 72
DELIMITER = "|"

_RETURN_KEYS = ("RETURN", "BAPIRETURN", "BAPIRET2")
_ERROR_TYPES = ("E", "A")


def call_function(conn: Any, name: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Call a function on a dictionary connection and check its return messages.

    Args:
        conn: Connection exposing ``call(name, params)``
        name: Function name
        params: Import and table parameters

    Returns:
        The function result

    Raises:
        DictionaryCallError: If the call fails or returns ``E``/``A`` messages
    """
    try:
        result = conn.call(name, dict(params or {})) or {}
    except FabricError:
        raise
    except Exception as e:
        raise DictionaryCallError(f"Call to {name} failed: {e}", {"function": name}) from e

    check_return(name, result)
    return result


def check_return(name: str, result: Dict[str, Any]) -> None:
    returned = None
    for key in _RETURN_KEYS:
        if result.get(key):
            returned = result[key]
            break
    if not returned:
        return

    messages = returned if isinstance(returned, list) else [returned]
    errors = [m for m in messages if (m.get("TYPE") or "").strip() in _ERROR_TYPES]
    if errors:
        text = "; ".join(
            f"{m.get('ID', '')}-{m.get('NUMBER', '')}: {(m.get('MESSAGE') or '').strip()}" for m in errors
        )
        raise DictionaryCallError(
            f"{name} returned errors: {text}",
            {"function": name, "messages": errors},
        )


def sanitize_literal(value: str) -> str:
    """Escape a value for use inside a quoted WHERE literal."""
    return str(value).replace("'", "''")


def split_where_clause(where: str, max_length: int = OPTION_LINE_LENGTH) -> List[str]:
    """Split a WHERE clause into option lines, preferring breaks at spaces."""
    if not where:
        return []
    lines = []
    remaining = where
    while remaining:
        if len(remaining) <= max_length:
            lines.append(remaining)
            break
        split_at = remaining.rfind(" ", 0, max_length + 1)
        if split_at <= 0:
            split_at = max_length
        lines.append(remaining[:split_at])
        remaining = remaining[split_at:].lstrip()
    return lines


def parse_table_result(result: Dict[str, Any]) -> List[Dict[str, str]]:
    """Slice ``DATA`` work-area rows into records using the ``FIELDS`` offsets."""
    layout = []
    for field in result.get("FIELDS") or []:
        layout.append((
            (field.get("FIELDNAME") or "").strip(),
            int(field.get("OFFSET") or 0),
            int(field.get("LENGTH") or 0),
        ))

    rows = []
    for row in result.get("DATA") or []:
        wa = row.get("WA") or ""
        rows.append({name: wa[offset:offset + length].strip() for name, offset, length in layout})
    return rows


def read_table(
    conn: Any,
    table: str,
    fields: Optional[List[str]] = None,
    where: Optional[str] = None,
    max_rows: int = 0,
    row_skip: int = 0,
    function_name: str = READ_TABLE_FUNCTION,
) -> List[Dict[str, str]]:
    """
    Read rows of a table through the table-read function.

    Args:
        conn: Dictionary connection
        table: Table name
        fields: Field names to return (all when omitted)
        where: WHERE clause; literals should go through ``sanitize_literal``
        max_rows: Row cap (0 = unlimited)
        row_skip: Rows to skip
        function_name: Table-read function to call

    Returns:
        List of records keyed by field name
    """
    params: Dict[str, Any] = {
        "QUERY_TABLE": table,
        "DELIMITER": DELIMITER,
        "ROWCOUNT": max_rows,
        "ROWSKIPS": row_skip,
        "OPTIONS": [{"TEXT": line} for line in split_where_clause(where or "")],
    }
    if fields:
        params["FIELDS"] = [{"FIELDNAME": f} for f in fields]

    result = call_function(conn, function_name, params)
    rows = parse_table_result(result)
    logger.debug(f"Read {len(rows)} rows from {table}")
    return rows
