"""
Data-dictionary intelligence.

Discovers field metadata, foreign keys, text tables, domain values and
data-element texts from the dictionary tables, and expands them into a
depth-bounded relationship graph. Every read borrows a connection from the
shared pool and returns it on all exit paths.
"""

import logging
from typing import Any, Dict, List, Optional, Set

from ..models.schema import FieldInfo
from .pool import ConnectionPool
from .table_reader import READ_TABLE_FUNCTION, call_function, read_table, sanitize_literal

logger = logging.getLogger(__name__)

MIN_GRAPH_DEPTH = 1
MAX_GRAPH_DEPTH = 5
LANGUAGE_FIELDS = ("SPRAS", "LANGU", "SPRACHE", "DDLANGUAGE")
DEFAULT_LANGUAGE_FIELD = "SPRAS"


def _text(value: Any) -> str:
    return str(value if value is not None else "").strip()


def _int(value: Any) -> int:
    try:
        return int(str(value).strip() or 0)
    except ValueError:
        return 0


def to_field_info(row: Dict[str, Any]) -> FieldInfo:
    """Convert a field-info (DFIES) row."""
    return FieldInfo(
        field_name=_text(row.get("FIELDNAME")),
        data_element=_text(row.get("ROLLNAME")),
        domain=_text(row.get("DOMNAME")),
        data_type=_text(row.get("DATATYPE")),
        length=_int(row.get("LENG")),
        decimals=_int(row.get("DECIMALS")),
        check_table=_text(row.get("CHECKTABLE")),
        field_text=_text(row.get("FIELDTEXT")),
        conversion_routine=_text(row.get("CONVEXIT")),
        is_key=_text(row.get("KEYFLAG")) == "X",
        internal_type=_text(row.get("INTTYPE")),
        ref_table=_text(row.get("REFTABLE")),
        ref_field=_text(row.get("REFFIELD")),
    )


class TableIntelligence:
    """Read dictionary metadata through a connection pool."""

    def __init__(
        self,
        pool: ConnectionPool,
        language: str = "E",
        read_function: str = READ_TABLE_FUNCTION,
    ):
        """
        Initialize the engine.

        Args:
            pool: Pool of dictionary connections (live gateway or fixtures)
            language: Logon language for texts
            read_function: Table-read function name
        """
        self.pool = pool
        self.language = language
        self.read_function = read_function

    def _read(self, conn: Any, table: str, fields: List[str], where: str) -> List[Dict[str, str]]:
        return read_table(conn, table, fields=fields, where=where, function_name=self.read_function)

    def get_field_info(self, table: str) -> List[FieldInfo]:
        """Field metadata of a table; empty for unknown tables."""
        with self.pool.connection() as conn:
            result = call_function(conn, "DDIF_FIELDINFO_GET", {
                "TABNAME": table,
                "LANGU": self.language,
                "ALLTYPES": "X",
            })
        return [to_field_info(row) for row in result.get("DFIES_TAB") or []]

    def get_table_definition(self, table: str) -> Dict[str, Any]:
        """Header, fields, relations and technical settings of a table."""
        with self.pool.connection() as conn:
            result = call_function(conn, "DDIF_TABL_GET", {"NAME": table, "LANGU": self.language})

        return {
            "DD02V_WA": result.get("DD02V_WA") or {},
            "DD03P_TAB": [
                {
                    "FIELDNAME": _text(f.get("FIELDNAME")),
                    "ROLLNAME": _text(f.get("ROLLNAME")),
                    "DOMNAME": _text(f.get("DOMNAME")),
                    "DATATYPE": _text(f.get("DATATYPE")),
                    "LENG": _int(f.get("LENG")),
                    "DECIMALS": _int(f.get("DECIMALS")),
                    "KEYFLAG": _text(f.get("KEYFLAG")),
                    "CHECKTABLE": _text(f.get("CHECKTABLE")),
                    "DDTEXT": _text(f.get("DDTEXT")),
                }
                for f in result.get("DD03P_TAB") or []
            ],
            "DD05M_TAB": result.get("DD05M_TAB") or [],
            "DD08V_TAB": result.get("DD08V_TAB") or [],
            "DD35V_TAB": result.get("DD35V_TAB") or [],
            "DD09L_WA": result.get("DD09L_WA") or {},
        }

    def discover_foreign_keys(self, table: str) -> Dict[str, List[Dict[str, Any]]]:
        """
        Discover foreign keys and text tables of a table.

        Reads the field list (check tables), the relationship definitions,
        and the field pairings, then separates text-table relations.

        Returns:
            Dict with ``foreignKeys`` ({from, to, fields, type}) and
            ``textTables`` ({table, langField})
        """
        literal = sanitize_literal(table)
        with self.pool.connection() as conn:
            field_rows = self._read(conn, "DD03L", ["FIELDNAME", "CHECKTABLE"], f"TABNAME = '{literal}'")
            definitions = self._read(
                conn, "DD08L", ["TABNAME", "CHECKTABLE", "FRKART", "FIELDNAME"], f"TABNAME = '{literal}'"
            )
            pairings = self._read(
                conn, "DD05S", ["TABNAME", "FIELDNAME", "FORTABLE", "FORKEY", "CHECKTABLE"], f"TABNAME = '{literal}'"
            )

        foreign_keys: Dict[str, Dict[str, Any]] = {}
        text_tables: List[Dict[str, str]] = []

        for definition in definitions:
            check_table = _text(definition.get("CHECKTABLE"))
            if not check_table:
                continue
            if _text(definition.get("FRKART")) == "TEXT":
                text_tables.append({"table": check_table, "langField": self._language_field(pairings, check_table)})
                continue
            foreign_keys.setdefault(check_table, {"from": table, "to": check_table, "fields": [], "type": "CHECK"})

        for pairing in pairings:
            target = _text(pairing.get("CHECKTABLE")) or _text(pairing.get("FORTABLE"))
            if target in foreign_keys:
                foreign_keys[target]["fields"].append({
                    "from": _text(pairing.get("FIELDNAME")),
                    "to": _text(pairing.get("FORKEY")),
                })

        # Check tables declared on fields without a relationship definition
        for row in field_rows:
            check_table = _text(row.get("CHECKTABLE"))
            if not check_table or check_table == "*" or check_table in foreign_keys:
                continue
            field_name = _text(row.get("FIELDNAME"))
            foreign_keys[check_table] = {
                "from": table,
                "to": check_table,
                "fields": [{"from": field_name, "to": field_name}],
                "type": "CHECK",
            }

        return {"foreignKeys": list(foreign_keys.values()), "textTables": text_tables}

    def _language_field(self, pairings: List[Dict[str, str]], text_table: str) -> str:
        for pairing in pairings:
            target = _text(pairing.get("FORTABLE")) or _text(pairing.get("CHECKTABLE"))
            if target == text_table and _text(pairing.get("FORKEY")) in LANGUAGE_FIELDS:
                return _text(pairing.get("FORKEY"))
        return DEFAULT_LANGUAGE_FIELD

    def get_relationship_graph(self, table: str, depth: int = 1) -> Dict[str, List[Dict[str, Any]]]:
        """
        Build an adjacency list of table relationships.

        Args:
            table: Starting table
            depth: Expansion depth, clamped to [1, 5]

        Returns:
            Dict of table -> list of {target, type, fields}
        """
        depth = min(max(int(depth), MIN_GRAPH_DEPTH), MAX_GRAPH_DEPTH)
        graph: Dict[str, List[Dict[str, Any]]] = {}
        self._build_graph(table, depth, graph, set())
        logger.info(f"Relationship graph for {table} (depth {depth}): {len(graph)} tables")
        return graph

    def _build_graph(
        self,
        table: str,
        remaining: int,
        graph: Dict[str, List[Dict[str, Any]]],
        visited: Set[str],
    ) -> None:
        if table in visited or remaining < 0:
            return
        visited.add(table)

        relations = self.discover_foreign_keys(table)
        neighbors = [
            {"target": fk["to"], "type": fk["type"], "fields": list(fk["fields"])}
            for fk in relations["foreignKeys"]
        ]
        neighbors.extend(
            {"target": tt["table"], "type": "TEXT", "fields": [{"from": DEFAULT_LANGUAGE_FIELD, "to": tt["langField"]}]}
            for tt in relations["textTables"]
        )
        graph[table] = neighbors

        if remaining == 0:
            return
        for neighbor in neighbors:
            if neighbor["target"] not in visited:
                self._build_graph(neighbor["target"], remaining - 1, graph, visited)

    def get_domain_values(self, domain: str) -> List[Dict[str, str]]:
        """Fixed values of a domain as {value, description}."""
        where = f"DOMNAME = '{sanitize_literal(domain)}' AND DDLANGUAGE = '{self.language}'"
        with self.pool.connection() as conn:
            rows = self._read(conn, "DD07L", ["DOMVALUE_L", "DDTEXT"], where)
        return [{"value": _text(r.get("DOMVALUE_L")), "description": _text(r.get("DDTEXT"))} for r in rows]

    def get_data_element_info(self, data_element: str) -> Optional[Dict[str, Any]]:
        """Technical attributes and texts of a data element, or None when unknown."""
        literal = sanitize_literal(data_element)
        with self.pool.connection() as conn:
            technical = self._read(
                conn, "DD04L", ["ROLLNAME", "DOMNAME", "DATATYPE", "LENG", "DECIMALS"], f"ROLLNAME = '{literal}'"
            )
            if not technical:
                return None
            texts = self._read(
                conn,
                "DD04T",
                ["DDTEXT", "REPTEXT", "SCRTEXT_S", "SCRTEXT_M", "SCRTEXT_L"],
                f"ROLLNAME = '{literal}' AND DDLANGUAGE = '{self.language}'",
            )

        tech = technical[0]
        text = texts[0] if texts else {}
        return {
            "rollName": _text(tech.get("ROLLNAME")),
            "domainName": _text(tech.get("DOMNAME")),
            "dataType": _text(tech.get("DATATYPE")),
            "length": _int(tech.get("LENG")),
            "decimals": _int(tech.get("DECIMALS")),
            "description": _text(text.get("DDTEXT")),
            "repText": _text(text.get("REPTEXT")),
            "shortText": _text(text.get("SCRTEXT_S")),
            "mediumText": _text(text.get("SCRTEXT_M")),
            "longText": _text(text.get("SCRTEXT_L")),
        }

    def get_table_summary(self, table: str) -> Dict[str, Any]:
        """Field info, keys, foreign keys and text tables in one document."""
        fields = self.get_field_info(table)
        relations = self.discover_foreign_keys(table)
        definition = self.get_table_definition(table)
        return {
            "table": table,
            "description": definition["DD02V_WA"].get("DDTEXT", ""),
            "tableClass": definition["DD02V_WA"].get("TABCLASS", ""),
            "fieldCount": len(fields),
            "keyFields": [f.field_name for f in fields if f.is_key],
            "fields": [f.to_dict() for f in fields],
            "foreignKeys": relations["foreignKeys"],
            "textTables": relations["textTables"],
        }
