import pytest

from migration_fabric.services.reconciliation import ReconciliationEngine, make_key


@pytest.fixture
def engine() -> ReconciliationEngine:
    return ReconciliationEngine()


@pytest.mark.unit
class TestReconcile:
    """Test full per-object reconciliation."""

    def test_identical_sets_pass(self, engine) -> None:
        """Count, coverage, aggregate, sample, duplicates and completeness all pass."""
        records = [{"ID": "1", "AMT": "100"}, {"ID": "2", "AMT": "200"}]

        report = engine.reconcile(
            "GL_BALANCE", records, [dict(r) for r in records],
            key_fields=["ID"], value_fields=["AMT"], aggregate_fields=["AMT"],
        )

        assert [c["type"] for c in report["checks"]] == [
            "count", "coverage", "aggregate", "sample", "duplicates", "completeness",
        ]
        assert all(c["status"] == "passed" for c in report["checks"])
        assert report["summary"] == {"total": 6, "passed": 6, "failed": 0, "warnings": 0, "status": "PASSED"}
        assert report["objectId"] == "GL_BALANCE"

    def test_missing_keys_fail(self, engine) -> None:
        report = engine.reconcile(
            "CUSTOMER", [{"ID": "1"}, {"ID": "2"}, {"ID": "3"}], [{"ID": "1"}], key_fields=["ID"],
        )

        coverage = next(c for c in report["checks"] if c["type"] == "coverage")
        assert coverage["missingKeys"] == 2
        assert coverage["missingExamples"] == ["2", "3"]
        assert coverage["status"] == "failed"
        assert report["summary"]["status"] == "FAILED"

    def test_only_count_check_without_fields(self, engine) -> None:
        report = engine.reconcile("X", [{"a": 1}], [{"a": 1}])

        assert [c["type"] for c in report["checks"]] == ["count"]
        assert report["summary"]["status"] == "PASSED"

    def test_warnings_summarize_as_passed_with_warnings(self, engine) -> None:
        source = [{"ID": str(i), "NAME": f"n{i}"} for i in range(10)]
        target = [dict(r) for r in source]
        target[0]["NAME"] = "changed"

        report = engine.reconcile("X", source, target, key_fields=["ID"], value_fields=["NAME"])

        sample = next(c for c in report["checks"] if c["type"] == "sample")
        assert sample["status"] == "warning"
        assert sample["mismatchDetails"] == [{"key": "0", "field": "NAME", "source": "n0", "target": "changed"}]
        assert report["summary"]["status"] == "PASSED_WITH_WARNINGS"

    def test_per_object_tolerance_override(self) -> None:
        engine = ReconciliationEngine({"count": 0, "overrides": {"LOOSE": {"count": 2}}})
        source = [{"a": 1}] * 3
        target = [{"a": 1}]

        assert engine.reconcile("LOOSE", source, target)["summary"]["status"] == "PASSED"
        assert engine.reconcile("STRICT", source, target)["summary"]["status"] == "FAILED"


@pytest.mark.unit
class TestChecks:
    """Test individual checks."""

    def test_record_count_mismatch(self, engine) -> None:
        check = engine.check_record_count([{}] * 5, [{}] * 3)

        assert check["variance"] == -2
        assert check["status"] == "failed"
        assert check["message"] == "Record count mismatch: source=5, target=3, diff=-2"

    def test_aggregate_within_tolerance(self, engine) -> None:
        source = [{"AMT": "0.1"}, {"AMT": "0.2"}]
        target = [{"AMT": "0.3"}]

        assert engine.check_aggregate(source, target, "AMT")["status"] == "passed"
        assert engine.check_aggregate(source, [{"AMT": "0.32"}], "AMT")["status"] == "failed"

    def test_aggregate_treats_non_numeric_as_zero(self, engine) -> None:
        check = engine.check_aggregate([{"AMT": "abc"}, {"AMT": "5"}], [{"AMT": 5}], "AMT")
        assert check["sourceValue"] == 5.0
        assert check["status"] == "passed"

    def test_duplicates_count_extra_copies(self, engine) -> None:
        """n records sharing a key count as n-1 duplicates."""
        target = [{"K1": "A", "K2": "1"}] * 3 + [{"K1": "B", "K2": "1"}] * 2 + [{"K1": "C", "K2": "1"}]

        check = engine.check_target_duplicates(target, ["K1", "K2"])

        assert check["duplicateCount"] == 3
        assert check["status"] == "failed"

    def test_sample_failure_above_three_mismatches(self, engine) -> None:
        source = [{"ID": str(i), "V": "x"} for i in range(4)]
        target = [{"ID": str(i), "V": "y"} for i in range(4)]

        check = engine.check_field_sample(source, target, ["ID"], ["V"])

        assert check["mismatches"] == 4
        assert check["status"] == "failed"

    def test_sample_is_capped(self, engine) -> None:
        source = [{"ID": str(i), "V": "x"} for i in range(500)]

        check = engine.check_field_sample(source, source, ["ID"], ["V"])

        assert check["sampledRecords"] == 50

    @pytest.mark.parametrize(
        "nulls, status",
        [(0, "passed"), (1, "warning"), (2, "failed")],
    )
    def test_null_rate_thresholds(self, engine, nulls: int, status: str) -> None:
        target = [{"V": None}] * nulls + [{"V": "x"}] * (10 - nulls)

        check = engine.check_null_fields(target, ["V"])

        assert check["status"] == status
        assert check["nullRate"] == nulls * 10.0
        assert check["fieldBreakdown"] == {"V": nulls}

    def test_null_check_on_empty_target(self, engine) -> None:
        check = engine.check_null_fields([], ["V"])
        assert check["totalCells"] == 0
        assert check["status"] == "passed"


@pytest.mark.unit
class TestReconcileAll:
    """Test reconciliation over orchestrator results."""

    def test_uses_declared_fields(self, engine) -> None:
        results = [{
            "objectId": "GL_BALANCE",
            "phases": {
                "extract": {"records": [{"ID": "1", "AMT": "100"}]},
                "transform": {"records": [{"ID": "1", "AMT": "100"}]},
            },
            "reconciliation": {"keyFields": ["ID"], "valueFields": ["AMT"], "aggregateFields": ["AMT"]},
        }]

        report = engine.reconcile_all(results)

        assert report["summary"] == {
            "objectsReconciled": 1,
            "totalChecks": 6,
            "totalPassed": 6,
            "totalFailed": 0,
            "overallStatus": "PASSED",
        }

    def test_skips_results_without_records(self, engine) -> None:
        results = [
            {"objectId": "A", "phases": {"extract": {"records": []}, "transform": {"records": []}}},
            {"objectId": "B", "phases": {"extract": {"records": [{"x": 1}]}}},
        ]

        assert engine.reconcile_all(results)["summary"]["objectsReconciled"] == 0

    def test_inferred_fields_detect_failure(self, engine) -> None:
        results = [{
            "objectId": "A",
            "phases": {
                "extract": {"records": [{"ID": "1", "AMT": 10}, {"ID": "2", "AMT": 20}]},
                "transform": {"records": [{"ID": "1", "AMT": 10}]},
            },
        }]

        report = engine.reconcile_all(results)

        assert report["summary"]["overallStatus"] == "FAILED"


@pytest.mark.unit
class TestFieldInference:
    """Test key, value and aggregate field inference."""

    def test_inference(self) -> None:
        records = [{"A": "1", "B": "x", "C": 2.5, "D": True, "E": "", "F": "7", "G": "g", "H": "h", "I": "i"}]

        assert ReconciliationEngine.infer_key_fields(records) == ["A", "B", "C"]
        assert ReconciliationEngine.infer_value_fields(records) == ["D", "E", "F", "G", "H"]
        assert ReconciliationEngine.infer_aggregate_fields(records) == ["A", "C", "F"]
        assert ReconciliationEngine.infer_key_fields([]) == []

    def test_make_key(self) -> None:
        assert make_key({"A": "1", "B": None, "C": 3}, ["A", "B", "C"]) == "1||3"
