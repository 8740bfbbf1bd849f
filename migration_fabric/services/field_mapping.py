"""Declarative field mapping engine."""

import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Set, Union

from dateutil import parser as date_parser

from ..models.schema import MappingRule, coerce_rules

logger = logging.getLogger(__name__)

_TRUTHY = {"X", "Y", "TRUE", "1"}
_COMPACT_DATE = re.compile(r"^\d{8}$")


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _pad_left(width: int) -> Callable[[Any], str]:
    def pad(value: Any) -> str:
        return "" if value is None else str(value).rjust(width, "0")
    return pad


def _to_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    if _COMPACT_DATE.match(text):
        return f"{text[0:4]}-{text[4:6]}-{text[6:8]}"
    if "/" in text:
        try:
            return date_parser.parse(text).date().isoformat()
        except (ValueError, OverflowError):
            return text
    return text


def _to_decimal(value: Any) -> float:
    if value is None or value == "":
        return 0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def _to_integer(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def _is_truthy_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if value is None:
        return False
    return str(value).strip().upper() in _TRUTHY


def _strip_leading_zeros(value: Any) -> str:
    if value is None:
        return ""
    return str(value).lstrip("0") or "0"


CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "padLeft10": _pad_left(10),
    "padLeft40": _pad_left(40),
    "toUpperCase": lambda v: _text(v).upper(),
    "toLowerCase": lambda v: _text(v).lower(),
    "trim": lambda v: _text(v).strip(),
    "stripLeadingZeros": _strip_leading_zeros,
    "toDate": _to_date,
    "toDecimal": _to_decimal,
    "toInteger": _to_integer,
    "boolYN": _is_truthy_flag,
    "boolTF": lambda v: "T" if _is_truthy_flag(v) else "F",
}


class FieldMappingEngine:
    """
    Apply mapping rules to records.

    Rule shapes:
    - rename:  {source, target, convert?, valueMap?, default?, transform?}
    - concat:  {target, sources, separator}
    - default: {target, default} (value or callable taking the record)

    Application is deterministic per record; the engine only accumulates
    diagnostic counters.
    """

    def __init__(
        self,
        rules: List[Union[MappingRule, Dict[str, Any], str]],
        pass_through: bool = False,
        converters: Optional[Dict[str, Callable[[Any], Any]]] = None,
    ):
        """
        Initialize the engine.

        Args:
            rules: Mapping rules (objects, dicts or ``SOURCE->TARGET`` strings)
            pass_through: Copy source fields that no rule consumed
            converters: Extra named converters
        """
        self.rules = coerce_rules(rules)
        self.pass_through = pass_through
        self.converters = dict(CONVERTERS)
        self.converters.update(converters or {})
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {"processed": 0, "mapped": 0, "unmapped": 0, "errors": 0}

    @classmethod
    def from_legacy(cls, specs: List[str], **kwargs: Any) -> "FieldMappingEngine":
        return cls([MappingRule.from_legacy(s) for s in specs], **kwargs)

    def register_converter(self, name: str, func: Callable[[Any], Any]) -> None:
        """Register a custom named converter."""
        self.converters[name] = func

    def apply_record(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Map one record; rules apply in declaration order."""
        target: Dict[str, Any] = {}
        consumed: Set[str] = set()

        for rule in self.rules:
            consumed.update(rule.source_fields)
            try:
                target[rule.target] = self._apply_rule(rule, record)
                self._stats["mapped"] += 1
            except Exception as e:
                self._stats["errors"] += 1
                logger.warning(f"Mapping error on field {rule.source or rule.target}: {e}")
                target[rule.target] = None

        if self.pass_through:
            for key, value in record.items():
                if key not in consumed and key not in target:
                    target[key] = value
                    self._stats["unmapped"] += 1

        self._stats["processed"] += 1
        return target

    def _apply_rule(self, rule: MappingRule, record: Dict[str, Any]) -> Any:
        if rule.kind == "concat":
            return rule.separator.join(_text(record.get(s)) for s in rule.sources or [])

        if rule.kind == "rename":
            value = record.get(rule.source)
            if value is None and rule.has_default:
                # Missing source: the default wins over any converter output
                value = self._default(rule, record)
            else:
                if rule.convert is not None:
                    value = self._resolve_converter(rule.convert)(value)
                if rule.value_map is not None:
                    key = _text(value)
                    if key in rule.value_map:
                        value = rule.value_map[key]
                    elif rule.has_default:
                        value = self._default(rule, record)
                elif value is None and rule.has_default:
                    value = self._default(rule, record)
            if rule.transform is not None:
                value = rule.transform(value, record)
            return value

        return self._default(rule, record) if rule.has_default else None

    def _default(self, rule: MappingRule, record: Dict[str, Any]) -> Any:
        return rule.default(record) if callable(rule.default) else rule.default

    def _resolve_converter(self, convert: Union[str, Callable[..., Any]]) -> Callable[[Any], Any]:
        if callable(convert):
            return convert
        if convert not in self.converters:
            raise KeyError(f"Unknown converter: {convert}")
        return self.converters[convert]

    def apply_batch(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self.apply_record(r) for r in records]

    def validate_mappings(self, source_fields: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Check rule consistency.

        Args:
            source_fields: Fields available in the source records, if known

        Returns:
            Dict with ``valid``, ``errors`` and ``warnings``
        """
        errors: List[str] = []
        warnings: List[str] = []
        targets: Set[str] = set()

        for i, rule in enumerate(self.rules):
            if not rule.target:
                errors.append(f"Mapping[{i}]: missing target field")
            if rule.kind == "default" and not rule.has_default:
                errors.append(f"Mapping[{i}]: no source, sources, or default defined")
            if isinstance(rule.convert, str) and rule.convert not in self.converters:
                errors.append(f"Mapping[{i}]: unknown converter '{rule.convert}'")
            if rule.target and rule.target in targets:
                errors.append(f"Mapping[{i}]: duplicate target '{rule.target}'")
            if rule.target:
                targets.add(rule.target)

        if source_fields is not None:
            available = set(source_fields)
            referenced: Set[str] = set()
            for i, rule in enumerate(self.rules):
                for name in rule.source_fields:
                    referenced.add(name)
                    if name not in available:
                        warnings.append(f"Mapping[{i}]: source field '{name}' not present in source records")
            for name in source_fields:
                if name not in referenced:
                    warnings.append(f"Source field '{name}' is not used by any mapping")

        for warning in warnings:
            logger.warning(warning)

        return {"valid": not errors, "errors": errors, "warnings": warnings}

    def get_summary(self) -> Dict[str, int]:
        return {"totalMappings": len(self.rules), **self._stats}

    def reset_stats(self) -> None:
        self._stats = self._empty_stats()
