"""Post-migration reconciliation between source and target record sets."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "|"
MAX_MISSING_EXAMPLES = 5
MAX_SAMPLE_SIZE = 50
DEFAULT_TOLERANCES = {"amount": 0.01, "count": 0, "percentage": 0.001}


def make_key(record: Dict[str, Any], key_fields: Sequence[str]) -> str:
    """Composite key: key field values joined with a pipe."""
    return KEY_SEPARATOR.join(_as_text(record.get(f)) for f in key_fields)


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def _as_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _is_numeric(value: Any) -> bool:
    if value is None or value == "" or isinstance(value, bool):
        return False
    try:
        float(value)
        return True
    except (TypeError, ValueError):
        return False


class ReconciliationEngine:
    """
    Compare what was extracted with what was produced for the target.

    Each check returns a dict with at least ``name``, ``type``, ``status``
    (passed / warning / failed) and ``message``.
    """

    def __init__(self, tolerances: Optional[Dict[str, Any]] = None):
        self.tolerances = dict(DEFAULT_TOLERANCES)
        self.overrides: Dict[str, Dict[str, Any]] = {}
        for key, value in (tolerances or {}).items():
            if key == "overrides":
                self.overrides = dict(value or {})
            elif value is not None:
                self.tolerances[key] = value

    def _tolerances_for(self, object_id: Optional[str]) -> Dict[str, Any]:
        merged = dict(self.tolerances)
        merged.update(self.overrides.get(object_id or "", {}))
        return merged

    def reconcile(
        self,
        object_id: str,
        source_records: List[Dict[str, Any]],
        target_records: List[Dict[str, Any]],
        key_fields: Optional[List[str]] = None,
        value_fields: Optional[List[str]] = None,
        aggregate_fields: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Run all applicable checks for one object.

        Args:
            object_id: Migration object identifier
            source_records: Records as extracted
            target_records: Records as transformed/loaded
            key_fields: Fields forming the composite key
            value_fields: Fields compared in the sample and completeness checks
            aggregate_fields: Numeric fields whose sums must match

        Returns:
            Report dict with ``checks`` and ``summary``
        """
        key_fields = key_fields or []
        value_fields = value_fields or []
        aggregate_fields = aggregate_fields or []
        tolerances = self._tolerances_for(object_id)

        logger.info(
            f"Reconciling {object_id}: {len(source_records)} source vs {len(target_records)} target records"
        )

        checks = [self.check_record_count(source_records, target_records, tolerances["count"])]
        if key_fields:
            checks.append(self.check_key_coverage(source_records, target_records, key_fields))
        for field_name in aggregate_fields:
            checks.append(
                self.check_aggregate(source_records, target_records, field_name, tolerances["amount"])
            )
        if key_fields and value_fields:
            checks.append(self.check_field_sample(source_records, target_records, key_fields, value_fields))
        if key_fields:
            checks.append(self.check_target_duplicates(target_records, key_fields))
        if value_fields:
            checks.append(self.check_null_fields(target_records, value_fields))

        summary = self._summarize(checks)
        logger.info(
            f"Reconciliation {object_id}: {summary['status']} ({summary['passed']}/{summary['total']} passed)"
        )

        return {
            "objectId": object_id,
            "timestamp": datetime.utcnow().isoformat(),
            "checks": checks,
            "summary": summary,
        }

    @staticmethod
    def _summarize(checks: List[Dict[str, Any]]) -> Dict[str, Any]:
        passed = sum(1 for c in checks if c["status"] == "passed")
        failed = sum(1 for c in checks if c["status"] == "failed")
        warnings = sum(1 for c in checks if c["status"] == "warning")
        if failed:
            status = "FAILED"
        elif warnings:
            status = "PASSED_WITH_WARNINGS"
        else:
            status = "PASSED"
        return {"total": len(checks), "passed": passed, "failed": failed, "warnings": warnings, "status": status}

    def reconcile_all(self, migration_results: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Reconcile every object result that captured extract and transform records.

        Key, value and aggregate fields are inferred from the first extracted
        record unless the result carries a ``reconciliation`` block naming them.
        """
        reports = []
        for result in migration_results:
            phases = result.get("phases") or {}
            extract = phases.get("extract")
            transform = phases.get("transform")
            if not extract or not transform:
                continue

            source_records = extract.get("records") or []
            target_records = transform.get("records") or []
            if not source_records and not target_records:
                continue

            declared = result.get("reconciliation") or {}
            reports.append(self.reconcile(
                object_id=result.get("objectId"),
                source_records=source_records,
                target_records=target_records,
                key_fields=declared.get("keyFields") or self.infer_key_fields(source_records),
                value_fields=declared.get("valueFields") or self.infer_value_fields(source_records),
                aggregate_fields=declared.get("aggregateFields") or self.infer_aggregate_fields(source_records),
            ))

        total_checks = sum(r["summary"]["total"] for r in reports)
        total_passed = sum(r["summary"]["passed"] for r in reports)
        total_failed = sum(r["summary"]["failed"] for r in reports)
        total_warnings = sum(r["summary"]["warnings"] for r in reports)
        if total_failed:
            overall = "FAILED"
        elif total_warnings:
            overall = "PASSED_WITH_WARNINGS"
        else:
            overall = "PASSED"

        return {
            "reports": reports,
            "summary": {
                "objectsReconciled": len(reports),
                "totalChecks": total_checks,
                "totalPassed": total_passed,
                "totalFailed": total_failed,
                "overallStatus": overall,
            },
        }

    # Checks

    def check_record_count(
        self,
        source: List[Dict[str, Any]],
        target: List[Dict[str, Any]],
        tolerance: Optional[float] = None,
    ) -> Dict[str, Any]:
        tolerance = self.tolerances["count"] if tolerance is None else tolerance
        diff = len(target) - len(source)
        ok = abs(diff) <= tolerance
        return {
            "name": "Record Count",
            "type": "count",
            "sourceValue": len(source),
            "targetValue": len(target),
            "variance": diff,
            "tolerance": tolerance,
            "status": "passed" if ok else "failed",
            "message": (
                f"Record counts match: {len(source)}" if ok
                else f"Record count mismatch: source={len(source)}, target={len(target)}, diff={diff}"
            ),
        }

    def check_key_coverage(
        self,
        source: List[Dict[str, Any]],
        target: List[Dict[str, Any]],
        key_fields: List[str],
    ) -> Dict[str, Any]:
        target_keys = {make_key(r, key_fields) for r in target}
        missing = 0
        examples: List[str] = []
        for record in source:
            key = make_key(record, key_fields)
            if key not in target_keys:
                missing += 1
                if len(examples) < MAX_MISSING_EXAMPLES:
                    examples.append(key)

        return {
            "name": "Key Coverage",
            "type": "coverage",
            "sourceKeys": len(source),
            "targetKeys": len(target_keys),
            "missingKeys": missing,
            "missingExamples": examples,
            "status": "passed" if missing == 0 else "failed",
            "message": (
                f"All {len(source)} source keys found in target" if missing == 0
                else f"{missing} source keys missing in target"
            ),
        }

    def check_aggregate(
        self,
        source: List[Dict[str, Any]],
        target: List[Dict[str, Any]],
        field_name: str,
        tolerance: Optional[float] = None,
    ) -> Dict[str, Any]:
        tolerance = self.tolerances["amount"] if tolerance is None else tolerance
        source_sum = sum(_as_number(r.get(field_name)) for r in source)
        target_sum = sum(_as_number(r.get(field_name)) for r in target)
        variance = abs(target_sum - source_sum)
        # Float sums of currency amounts drift in the last bits.
        ok = round(variance, 9) <= tolerance
        return {
            "name": f"Aggregate: {field_name}",
            "type": "aggregate",
            "field": field_name,
            "sourceValue": source_sum,
            "targetValue": target_sum,
            "variance": variance,
            "tolerance": tolerance,
            "status": "passed" if ok else "failed",
            "message": (
                f"{field_name} aggregate matches: {source_sum}" if ok
                else f"{field_name} aggregate mismatch: source={source_sum}, target={target_sum}, diff={variance}"
            ),
        }

    def check_field_sample(
        self,
        source: List[Dict[str, Any]],
        target: List[Dict[str, Any]],
        key_fields: List[str],
        value_fields: List[str],
    ) -> Dict[str, Any]:
        target_by_key = {make_key(r, key_fields): r for r in target}
        sample_size = min(len(source), MAX_SAMPLE_SIZE)
        step = max(1, len(source) // sample_size) if sample_size else 1

        checked = 0
        mismatches = 0
        details: List[Dict[str, Any]] = []
        for i in range(0, len(source), step):
            if checked >= sample_size:
                break
            src = source[i]
            key = make_key(src, key_fields)
            tgt = target_by_key.get(key)
            if tgt is None:
                continue
            checked += 1
            for field_name in value_fields:
                src_val = _as_text(src.get(field_name))
                tgt_val = _as_text(tgt.get(field_name))
                if src_val != tgt_val:
                    mismatches += 1
                    if len(details) < MAX_MISSING_EXAMPLES:
                        details.append({"key": key, "field": field_name, "source": src_val, "target": tgt_val})

        if mismatches == 0:
            status = "passed"
        elif mismatches <= 3:
            status = "warning"
        else:
            status = "failed"

        return {
            "name": "Field Sample Check",
            "type": "sample",
            "sampledRecords": checked,
            "fieldsChecked": len(value_fields),
            "mismatches": mismatches,
            "mismatchDetails": details,
            "status": status,
            "message": (
                f"{checked} sampled records match across {len(value_fields)} fields" if mismatches == 0
                else f"{mismatches} field mismatches found in {checked} sampled records"
            ),
        }

    def check_target_duplicates(self, target: List[Dict[str, Any]], key_fields: List[str]) -> Dict[str, Any]:
        seen = set()
        duplicates = 0
        for record in target:
            key = make_key(record, key_fields)
            if key in seen:
                duplicates += 1
            seen.add(key)

        return {
            "name": "Target Duplicates",
            "type": "duplicates",
            "totalRecords": len(target),
            "duplicateCount": duplicates,
            "status": "passed" if duplicates == 0 else "failed",
            "message": (
                "No duplicate keys in target" if duplicates == 0
                else f"{duplicates} duplicate keys found in target"
            ),
        }

    def check_null_fields(self, target: List[Dict[str, Any]], value_fields: List[str]) -> Dict[str, Any]:
        null_counts = {f: 0 for f in value_fields}
        for record in target:
            for field_name in value_fields:
                if record.get(field_name) is None or record.get(field_name) == "":
                    null_counts[field_name] += 1

        total_null = sum(null_counts.values())
        total_cells = len(target) * len(value_fields)
        rate = total_null / total_cells if total_cells else 0.0

        if rate < 0.05:
            status = "passed"
        elif rate < 0.15:
            status = "warning"
        else:
            status = "failed"

        return {
            "name": "Null/Empty Fields",
            "type": "completeness",
            "totalCells": total_cells,
            "nullCells": total_null,
            "nullRate": round(rate * 100, 2),
            "fieldBreakdown": null_counts,
            "status": status,
            "message": f"{round(rate * 100)}% null/empty ({total_null}/{total_cells} cells)",
        }

    # Field inference

    @staticmethod
    def infer_key_fields(records: List[Dict[str, Any]]) -> List[str]:
        return list(records[0].keys())[:3] if records else []

    @staticmethod
    def infer_value_fields(records: List[Dict[str, Any]]) -> List[str]:
        return list(records[0].keys())[3:8] if records else []

    @staticmethod
    def infer_aggregate_fields(records: List[Dict[str, Any]]) -> List[str]:
        if not records:
            return []
        return [k for k, v in records[0].items() if _is_numeric(v)][:3]
