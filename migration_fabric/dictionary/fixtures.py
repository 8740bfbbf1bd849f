"""
Fixture-backed dictionary connection.

``FixtureConnection`` answers the same function calls a live dictionary
gateway does (field info, table definition and table reads over the
dictionary tables) from the bundled ``dictionary_fixtures.json`` file, so
the intelligence engine runs unchanged against it.
"""

import copy
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import DictionaryCallError
from .pool import ConnectionPool

logger = logging.getLogger(__name__)

FIXTURES_PATH = Path(__file__).resolve().parent.parent / "data" / "dictionary_fixtures.json"

READ_FUNCTIONS = ("RFC_READ_TABLE", "BBP_RFC_READ_TABLE", "/SAPDS/RFC_READ_TABLE")

_CONDITION = re.compile(r"(\w+)\s*=\s*'((?:[^']|'')*)'")

TABLE_COLUMNS = {
    "T000": ["MANDT", "MTEXT"],
    "DD03L": ["TABNAME", "FIELDNAME", "POSITION", "KEYFLAG", "ROLLNAME", "CHECKTABLE", "DATATYPE", "LENG", "DECIMALS"],
    "DD08L": ["TABNAME", "FIELDNAME", "CHECKTABLE", "FRKART"],
    "DD05S": ["TABNAME", "FIELDNAME", "FORTABLE", "FORKEY", "CHECKTABLE", "PRIMPOS"],
    "DD07L": ["DOMNAME", "DDLANGUAGE", "VALPOS", "DOMVALUE_L", "DDTEXT"],
    "DD04L": ["ROLLNAME", "DOMNAME", "DATATYPE", "LENG", "DECIMALS"],
    "DD04T": ["ROLLNAME", "DDLANGUAGE", "DDTEXT", "REPTEXT", "SCRTEXT_S", "SCRTEXT_M", "SCRTEXT_L"],
}


def load_fixtures(path: Optional[Path] = None) -> Dict[str, Any]:
    with open(path or FIXTURES_PATH, "r", encoding="utf-8") as f:
        return json.load(f)


def parse_conditions(options: List[Dict[str, str]]) -> Dict[str, str]:
    """Extract ``FIELD = 'value'`` equality conditions from option lines."""
    where = " ".join(line.get("TEXT", "") for line in options or [])
    return {name: value.replace("''", "'") for name, value in _CONDITION.findall(where)}


class FixtureConnection:
    """In-memory stand-in for a dictionary connection."""

    def __init__(self, fixtures: Optional[Dict[str, Any]] = None):
        self.fixtures = fixtures if fixtures is not None else load_fixtures()
        self.is_connected = True
        self.calls: List[str] = []

    def close(self) -> None:
        self.is_connected = False

    def call(self, name: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params = params or {}
        self.calls.append(name)

        if name == "DDIF_FIELDINFO_GET":
            return {"DFIES_TAB": copy.deepcopy(self._field_info(params.get("TABNAME", "")))}
        if name == "DDIF_TABL_GET":
            return self._table_definition(params.get("NAME", ""))
        if name in READ_FUNCTIONS:
            return self._read_table(params)

        raise DictionaryCallError(f"Function {name} is not available in fixtures", {"function": name})

    # Fixture lookups

    def _field_info(self, table: str) -> List[Dict[str, Any]]:
        return self.fixtures.get("field_info", {}).get(table, [])

    def _foreign_keys(self, table: str) -> Dict[str, Any]:
        return self.fixtures.get("foreign_keys", {}).get(table, {"foreignKeys": [], "textTables": []})

    def _table_definition(self, table: str) -> Dict[str, Any]:
        definition = self.fixtures.get("table_definitions", {}).get(table)
        fields = self._field_info(table)
        if not definition or not fields:
            return {
                "DD02V_WA": {"TABNAME": table, "DDTEXT": f"Table {table}", "TABCLASS": "TRANSP",
                             "CLIDEP": "X", "CONTFLAG": "A", "MATEFLAG": "", "BUFFERED": ""},
                "DD03P_TAB": [],
                "DD05M_TAB": [],
                "DD08V_TAB": [],
                "DD35V_TAB": [],
                "DD09L_WA": {"TABNAME": table, "TABART": "APPL0", "SCHFELDANZ": 0, "PUFFERUNG": "", "PROTOKOLL": ""},
            }

        relations = self._foreign_keys(table)
        return {
            "DD02V_WA": dict(definition["DD02V_WA"]),
            "DD03P_TAB": [
                {
                    "FIELDNAME": f["FIELDNAME"],
                    "ROLLNAME": f["ROLLNAME"],
                    "DOMNAME": f["DOMNAME"],
                    "DATATYPE": f["DATATYPE"],
                    "LENG": f["LENG"],
                    "DECIMALS": f["DECIMALS"],
                    "KEYFLAG": f["KEYFLAG"],
                    "CHECKTABLE": f["CHECKTABLE"],
                    "DDTEXT": f["FIELDTEXT"],
                }
                for f in fields
            ],
            "DD05M_TAB": [
                {"TABNAME": table, "FORTABLE": fk["to"], "FIELDNAME": pair["from"], "FORKEY": pair["to"]}
                for fk in relations["foreignKeys"]
                for pair in fk["fields"]
            ],
            "DD08V_TAB": [
                {"TABNAME": table, "CHECKTABLE": fk["to"], "FRKART": ""} for fk in relations["foreignKeys"]
            ] + [
                {"TABNAME": table, "CHECKTABLE": tt["table"], "FRKART": "TEXT"} for tt in relations["textTables"]
            ],
            "DD35V_TAB": [],
            "DD09L_WA": dict(definition["DD09L_WA"]),
        }

    # Table reads

    def _read_table(self, params: Dict[str, Any]) -> Dict[str, Any]:
        table = params.get("QUERY_TABLE", "")
        conditions = parse_conditions(params.get("OPTIONS") or [])
        rows = self._rows_for(table, conditions)

        skip = int(params.get("ROWSKIPS") or 0)
        count = int(params.get("ROWCOUNT") or 0)
        rows = rows[skip:skip + count] if count else rows[skip:]

        requested = [f.get("FIELDNAME") for f in params.get("FIELDS") or []]
        columns = requested or TABLE_COLUMNS.get(table) or (list(rows[0].keys()) if rows else [])
        delimiter = params.get("DELIMITER") or ""
        return encode_work_areas(rows, columns, delimiter)

    def _rows_for(self, table: str, conditions: Dict[str, str]) -> List[Dict[str, Any]]:
        if table == "T000":
            return [{"MANDT": "100", "MTEXT": "Fixture client"}]

        if table == "DD03L":
            name = conditions.get("TABNAME", "")
            return [
                {
                    "TABNAME": name,
                    "FIELDNAME": f["FIELDNAME"],
                    "POSITION": str(pos).zfill(4),
                    "KEYFLAG": f["KEYFLAG"],
                    "ROLLNAME": f["ROLLNAME"],
                    "CHECKTABLE": f["CHECKTABLE"],
                    "DATATYPE": f["DATATYPE"],
                    "LENG": f["LENG"],
                    "DECIMALS": f["DECIMALS"],
                }
                for pos, f in enumerate(self._field_info(name), start=1)
            ]

        if table == "DD08L":
            name = conditions.get("TABNAME", "")
            relations = self._foreign_keys(name)
            rows = [
                {
                    "TABNAME": name,
                    "FIELDNAME": fk["fields"][0]["from"] if fk["fields"] else "",
                    "CHECKTABLE": fk["to"],
                    "FRKART": fk.get("type", ""),
                }
                for fk in relations["foreignKeys"]
            ]
            rows.extend(
                {"TABNAME": name, "FIELDNAME": tt["langField"], "CHECKTABLE": tt["table"], "FRKART": "TEXT"}
                for tt in relations["textTables"]
            )
            return rows

        if table == "DD05S":
            name = conditions.get("TABNAME", "")
            relations = self._foreign_keys(name)
            rows = []
            for fk in relations["foreignKeys"]:
                for pos, pair in enumerate(fk["fields"], start=1):
                    rows.append({
                        "TABNAME": name,
                        "FIELDNAME": pair["from"],
                        "FORTABLE": fk["to"],
                        "FORKEY": pair["to"],
                        "CHECKTABLE": fk["to"],
                        "PRIMPOS": str(pos).zfill(4),
                    })
            for tt in relations["textTables"]:
                rows.append({
                    "TABNAME": name,
                    "FIELDNAME": tt["langField"],
                    "FORTABLE": tt["table"],
                    "FORKEY": tt["langField"],
                    "CHECKTABLE": tt["table"],
                    "PRIMPOS": "0001",
                })
            return rows

        if table == "DD07L":
            domain = conditions.get("DOMNAME", "")
            return [
                {"DOMNAME": domain, "DDLANGUAGE": "E", "VALPOS": str(pos).zfill(4), **value}
                for pos, value in enumerate(self.fixtures.get("domain_values", {}).get(domain, []), start=1)
            ]

        if table in ("DD04L", "DD04T"):
            element = self.fixtures.get("data_elements", {}).get(conditions.get("ROLLNAME", ""))
            if not element:
                return []
            return [{**{k: str(v) for k, v in element.items()}, "DDLANGUAGE": "E"}]

        rows = self.fixtures.get("table_rows", {}).get(table)
        if rows is None:
            logger.debug(f"No fixture rows for table {table}")
            return []
        return [
            dict(row) for row in rows
            if all(str(row.get(name, "")) == value for name, value in conditions.items())
        ]


def encode_work_areas(rows: List[Dict[str, Any]], columns: List[str], delimiter: str = "|") -> Dict[str, Any]:
    """Render rows as ``FIELDS`` (with offsets) and fixed-width ``DATA`` work areas."""
    widths = []
    for column in columns:
        values = [str(row.get(column, "") or "") for row in rows]
        widths.append(max([len(v) for v in values] + [len(column), 1]))

    fields = []
    offset = 0
    for column, width in zip(columns, widths):
        fields.append({"FIELDNAME": column, "OFFSET": str(offset).zfill(6), "LENGTH": str(width).zfill(6), "TYPE": "C"})
        offset += width + len(delimiter)

    data = []
    for row in rows:
        cells = [str(row.get(c, "") or "").ljust(w) for c, w in zip(columns, widths)]
        data.append({"WA": delimiter.join(cells)})

    return {"FIELDS": fields, "DATA": data}


def create_fixture_pool(size: int = 5, fixtures: Optional[Dict[str, Any]] = None) -> ConnectionPool:
    """A pool whose connections answer from the bundled fixtures."""
    data = fixtures if fixtures is not None else load_fixtures()
    return ConnectionPool(lambda: FixtureConnection(data), size=size)
