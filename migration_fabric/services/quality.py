"""Batch-level data quality checks."""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


class DataQualityChecker:
    """
    Run data quality checks over a record set.

    ``check()`` takes a config such as::

        {
            "required": ["CompanyCode"],
            "exactDuplicate": {"keys": ["CompanyCode", "Customer"]},
            "referential": [{"field": "Country", "validSet": ["DE", "US"]}],
            "format": [{"field": "PostalCode", "pattern": "^\\d{5}$"}],
            "range": [{"field": "Amount", "min": 0}],
        }

    Required, duplicate and referential findings are errors; format and
    range findings are warnings.
    """

    def check(self, records: List[Dict[str, Any]], config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        config = config or {}
        checks = []

        if config.get("required"):
            checks.append(self.check_required(records, config["required"]))
        if config.get("exactDuplicate"):
            checks.append(self.find_exact_duplicates(records, config["exactDuplicate"]["keys"]))
        for ref in config.get("referential") or []:
            checks.append(self.check_referential_integrity(records, ref["field"], ref["validSet"]))
        for fmt in config.get("format") or []:
            checks.append(self.check_format(records, fmt["field"], fmt["pattern"], fmt.get("description")))
        for rng in config.get("range") or []:
            checks.append(self.check_range(records, rng["field"], rng.get("min"), rng.get("max")))

        errors = [c for c in checks if c["severity"] == "error"]
        warnings = [c for c in checks if c["severity"] == "warning"]
        status = "errors" if errors else "warnings" if warnings else "passed"

        if errors:
            logger.warning(f"Data quality: {len(errors)} failing checks over {len(records)} records")

        return {
            "status": status,
            "totalRecords": len(records),
            "errorCount": len(errors),
            "warningCount": len(warnings),
            "checks": checks,
        }

    @staticmethod
    def _result(name: str, severity: str, message: str, details: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "name": name,
            "severity": severity if details else "pass",
            "message": message,
            "details": details,
            "count": len(details),
        }

    def check_required(self, records: List[Dict[str, Any]], fields: List[str]) -> Dict[str, Any]:
        missing = [
            {"row": i, "field": f}
            for i, record in enumerate(records)
            for f in fields
            if _is_blank(record.get(f))
        ]
        message = (
            f"{len(missing)} missing required value(s) across fields: {', '.join(fields)}"
            if missing else f"All required fields present: {', '.join(fields)}"
        )
        return self._result("required", "error", message, missing)

    def find_exact_duplicates(self, records: List[Dict[str, Any]], keys: List[str]) -> Dict[str, Any]:
        seen: Dict[str, int] = {}
        duplicates = []
        for i, record in enumerate(records):
            key = "|".join("" if record.get(k) is None else str(record.get(k)) for k in keys)
            if key in seen:
                duplicates.append({"row": i, "duplicateOf": seen[key], "key": key})
            else:
                seen[key] = i
        message = (
            f"{len(duplicates)} exact duplicate(s) on keys: {', '.join(keys)}"
            if duplicates else f"No exact duplicates on keys: {', '.join(keys)}"
        )
        return self._result("exactDuplicate", "error", message, duplicates)

    def check_referential_integrity(
        self,
        records: List[Dict[str, Any]],
        field: str,
        valid_set: Iterable[Any],
    ) -> Dict[str, Any]:
        reference = set(valid_set)
        violations = [
            {"row": i, "field": field, "value": record.get(field)}
            for i, record in enumerate(records)
            if not _is_blank(record.get(field)) and record.get(field) not in reference
        ]
        message = (
            f"{len(violations)} referential integrity violation(s) on {field}"
            if violations else f"Referential integrity OK for {field}"
        )
        return self._result("referentialIntegrity", "error", message, violations)

    def check_format(
        self,
        records: List[Dict[str, Any]],
        field: str,
        pattern: str,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        regex = re.compile(pattern)
        violations = [
            {"row": i, "field": field, "value": record.get(field)}
            for i, record in enumerate(records)
            if not _is_blank(record.get(field)) and not regex.search(str(record.get(field)))
        ]
        message = (
            f"{len(violations)} format violation(s) on {field} ({description or pattern})"
            if violations else f"Format OK for {field}"
        )
        return self._result("format", "warning", message, violations)

    def check_range(
        self,
        records: List[Dict[str, Any]],
        field: str,
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
    ) -> Dict[str, Any]:
        violations = []
        for i, record in enumerate(records):
            try:
                value = float(record.get(field))
            except (TypeError, ValueError):
                continue
            if minimum is not None and value < minimum:
                violations.append({"row": i, "field": field, "value": value, "reason": f"below min {minimum}"})
            if maximum is not None and value > maximum:
                violations.append({"row": i, "field": field, "value": value, "reason": f"above max {maximum}"})
        message = (
            f"{len(violations)} range violation(s) on {field}"
            if violations else f"Range OK for {field}"
        )
        return self._result("range", "warning", message, violations)
