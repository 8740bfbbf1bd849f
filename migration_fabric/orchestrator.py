"""Migration orchestrator - coordinates extract, transform, validate and load per object."""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from .connector import LiveConnector
from .errors import (
    CancelledError,
    ConfigurationError,
    ObjectNotFoundError,
    RecordValidationError,
)
from .models.migration import MigrationConfig, RunState, RunStatus, new_run_id
from .models.record import ObjectPhase, ObjectRun, ObjectStatus
from .odata import format_date_literal
from .services.checkpoint import CheckpointManager
from .services.field_mapping import FieldMappingEngine
from .services.quality import DataQualityChecker
from .services.reconciliation import ReconciliationEngine
from .services.validator import RecordValidator

logger = logging.getLogger(__name__)


class MigrationOrchestrator:
    """
    Orchestrates a migration run across migration objects.

    Handles:
    - Object selection (explicit ids, modules) and dependency ordering
    - Per-object extract -> transform -> validate -> load
    - Checkpoints after every object, removed when the run succeeds
    - Resume from a checkpoint and cooperative cancellation
    - Reconciliation of the captured record sets
    """

    def __init__(
        self,
        config: MigrationConfig,
        connector: LiveConnector,
        checkpoint_manager: Optional[CheckpointManager] = None,
        reconciliation_engine: Optional[ReconciliationEngine] = None,
        validators: Optional[Dict[str, RecordValidator]] = None,
        converters: Optional[Dict[str, Callable[[Any], Any]]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Runtime options
            connector: Connector used for extraction and loading
            checkpoint_manager: Checkpoint store (``config.checkpoint_dir`` by default)
            reconciliation_engine: Engine used by ``reconcile()``
            validators: Prebuilt validators per object id, replacing configured rules
            converters: Extra named converters for the mapping engine
            cancel_event: Shared cancellation signal
        """
        self.config = config
        self.connector = connector
        self.checkpoints = checkpoint_manager or CheckpointManager(config.checkpoint_dir)
        self.reconciler = reconciliation_engine or ReconciliationEngine(config.tolerances)
        self.validators = validators or {}
        self.converters = converters or {}
        self.cancel_event = cancel_event or threading.Event()
        self.quality_checker = DataQualityChecker()

        # Runtime state
        self.state: Optional[RunState] = None
        self.object_runs: Dict[str, ObjectRun] = {}
        self.reconciliation_report: Optional[Dict[str, Any]] = None
        self._aborted = False

    # Run control

    def run(self, object_ids: Optional[List[str]] = None, run_id: Optional[str] = None) -> RunState:
        """
        Run the migration for the selected objects.

        Args:
            object_ids: Objects to migrate (configured objects/modules by default)
            run_id: Run identifier (generated when omitted)

        Returns:
            Final RunState
        """
        objects = self.resolve_objects(object_ids)
        state = RunState(
            run_id=run_id or new_run_id(),
            pending_objects=objects,
            config=self.config.to_dict(),
        )
        return self._execute(state)

    def resume(self, run_id: str) -> RunState:
        """
        Continue a run from its checkpoint.

        Completed objects are skipped; failed and pending objects run again.

        Raises:
            ObjectNotFoundError: If no checkpoint exists for the run
        """
        document = self.checkpoints.load(run_id)
        if document is None:
            raise ObjectNotFoundError(f"No checkpoint found for run {run_id}", {"runId": run_id})

        state = RunState.from_dict(run_id, document.get("state") or {})
        completed = set(state.completed_objects)

        remaining: List[str] = []
        for object_id in state.pending_objects + state.failed_objects:
            if object_id not in completed and object_id not in remaining:
                remaining.append(object_id)

        state.pending_objects = remaining
        state.failed_objects = []
        state.results = [r for r in state.results if r.get("objectId") in completed]
        state.status = RunStatus.RUNNING.value

        logger.info(
            f"Resuming run {run_id}: skipping {len(completed)} completed objects, {len(remaining)} remaining"
        )
        return self._execute(state)

    def cancel(self) -> None:
        """Ask the run in progress to stop at the next phase or object boundary."""
        logger.warning("Cancellation requested")
        self.cancel_event.set()

    def _check_cancelled(self, object_id: Optional[str] = None) -> None:
        if self.cancel_event.is_set():
            raise CancelledError("Run cancelled", {"objectId": object_id} if object_id else None)

    def _execute(self, state: RunState) -> RunState:
        self.state = state
        self.cancel_event.clear()
        self._aborted = False

        logger.info(f"=== MIGRATION RUN {state.run_id}: {len(state.pending_objects)} objects ===")

        try:
            self._run_objects(state)
            state.status = self._final_status(state)

            if self.config.reconcile:
                self.reconcile()

        except CancelledError as e:
            logger.warning(f"Run {state.run_id} cancelled: {e}")
            state.status = RunStatus.CANCELLED.value

        except Exception as e:
            logger.error(f"Run {state.run_id} failed: {e}")
            state.status = RunStatus.FAILED.value
            raise

        if state.status in (RunStatus.COMPLETED.value, RunStatus.COMPLETED_WITH_ERRORS.value) \
                and not state.failed_objects:
            self.checkpoints.remove(state.run_id)
        else:
            self._save_checkpoint(state)

        if self.config.report_dir:
            self._save_report(state)

        summary = self.get_summary()
        logger.info(
            f"=== RUN {state.run_id} {summary['status'].upper()}: "
            f"{summary['completed']}/{summary['total']} completed, {summary['failed']} failed ==="
        )
        return state

    def _run_objects(self, state: RunState) -> None:
        for object_id in list(state.pending_objects):
            self._check_cancelled(object_id)

            object_run = self._process_object(object_id)
            self.object_runs[object_id] = object_run
            state.results.append(object_run.to_dict())

            if object_run.status == ObjectStatus.CANCELLED:
                raise CancelledError("Run cancelled", {"objectId": object_id})

            state.pending_objects.remove(object_id)
            if object_run.status == ObjectStatus.FAILED:
                state.failed_objects.append(object_id)
            else:
                state.completed_objects.append(object_id)
            self._save_checkpoint(state)

            if object_run.status == ObjectStatus.FAILED and self.config.is_fail_fast(object_id):
                logger.error(f"Stopping run: {object_id} failed and is marked fail-fast")
                self._aborted = True
                break

    def _final_status(self, state: RunState) -> str:
        if self._aborted or (state.failed_objects and not state.completed_objects):
            return RunStatus.FAILED.value
        with_errors = any(r.get("status") == ObjectStatus.COMPLETED_WITH_ERRORS.value for r in state.results)
        if state.failed_objects or with_errors:
            return RunStatus.COMPLETED_WITH_ERRORS.value
        return RunStatus.COMPLETED.value

    # Object selection

    def resolve_objects(self, object_ids: Optional[List[str]] = None) -> List[str]:
        """
        Select and order the objects of a run.

        Raises:
            ConfigurationError: If nothing is selected, an object is unmapped,
                or the dependencies are cyclic
        """
        selected = list(object_ids or self.config.objects)

        if self.config.modules:
            module_members: List[str] = []
            for module in self.config.modules:
                if module not in self.config.module_objects:
                    raise ConfigurationError(f"Unknown module: {module}", {"field": "modules"})
                module_members.extend(self.config.module_objects[module])
            if selected:
                selected = [o for o in selected if o in module_members]
            else:
                selected = module_members

        deduped: List[str] = []
        for object_id in selected:
            if object_id not in deduped:
                deduped.append(object_id)

        if not deduped:
            raise ConfigurationError("No migration objects selected", {"field": "objects"})

        unmapped = [o for o in deduped if not self.connector.has_mapping(o)]
        if unmapped:
            raise ConfigurationError(
                f"No live service mapping for: {', '.join(unmapped)}", {"objectIds": unmapped}
            )

        return self._order_by_dependencies(deduped)

    def _order_by_dependencies(self, objects: List[str]) -> List[str]:
        """Topological order, stable with respect to the declared order."""
        members = set(objects)
        prerequisites = {
            o: [d for d in self.config.dependencies.get(o, []) if d in members] for o in objects
        }
        ordered: List[str] = []
        placed = set()

        while len(ordered) < len(objects):
            ready = next(
                (o for o in objects if o not in placed and all(d in placed for d in prerequisites[o])),
                None,
            )
            if ready is None:
                cycle = [o for o in objects if o not in placed]
                raise ConfigurationError(
                    f"Cyclic object dependencies: {', '.join(cycle)}", {"field": "dependencies"}
                )
            ordered.append(ready)
            placed.add(ready)

        return ordered

    # Per-object pipeline

    def _process_object(self, object_id: str) -> ObjectRun:
        """Run one object through all phases; errors end the object, not the run."""
        object_run = ObjectRun(object_id=object_id)
        has_errors = False

        try:
            # Phase 1: Extraction
            logger.info(f"=== PHASE 1: EXTRACTION ({object_id}) ===")
            object_run.phase = ObjectPhase.EXTRACTING
            source_records = self._run_extraction(object_run)
            self._check_cancelled(object_id)

            # Phase 2: Transformation
            logger.info(f"=== PHASE 2: TRANSFORMATION ({object_id}) ===")
            object_run.phase = ObjectPhase.TRANSFORMING
            target_records = self._run_transformation(object_run, source_records)
            self._check_cancelled(object_id)

            # Phase 3: Validation
            logger.info(f"=== PHASE 3: VALIDATION ({object_id}) ===")
            object_run.phase = ObjectPhase.VALIDATING
            has_errors = self._run_validation(object_run, target_records)
            self._check_cancelled(object_id)

            # Phase 4: Loading
            logger.info(f"=== PHASE 4: LOADING ({object_id}) ===")
            object_run.phase = ObjectPhase.LOADING
            load_status = self._run_loading(object_run, target_records)

            if load_status == ObjectStatus.FAILED.value:
                load = object_run.phases["load"]
                object_run.error = load.get("batchError") or f"All {load['recordCount']} records failed to load"
                object_run.finish(ObjectStatus.FAILED)
            elif has_errors or load_status == ObjectStatus.COMPLETED_WITH_ERRORS.value:
                object_run.finish(ObjectStatus.COMPLETED_WITH_ERRORS)
            else:
                object_run.finish(ObjectStatus.COMPLETED)

        except CancelledError as e:
            logger.warning(f"{object_id} cancelled during {object_run.phase.value}")
            object_run.error = str(e)
            object_run.finish(ObjectStatus.CANCELLED)

        except Exception as e:
            logger.error(f"{object_id} failed during {object_run.phase.value}: {e}")
            object_run.error = str(e)
            object_run.finish(ObjectStatus.FAILED)

        logger.info(f"{object_id}: {object_run.status.value} in {object_run.duration_ms}ms")
        return object_run

    def _extraction_params(self, object_id: str) -> Dict[str, str]:
        if not self.config.cutoff_date:
            return {}
        mapping = self.connector.get_mapping(object_id) or {}
        if mapping.get("transport") == "rfc":
            return {}
        literal = format_date_literal(self.config.cutoff_date, mapping.get("dialect", "v2"))
        return {"$filter": f"{self.config.cutoff_field_for(object_id)} ge {literal}"}

    def _run_extraction(self, object_run: ObjectRun) -> List[Dict[str, Any]]:
        """Run the extraction phase."""
        result = self.connector.extract_result(
            object_run.object_id,
            self._extraction_params(object_run.object_id),
            max_records=self.config.max_records,
        )
        object_run.phases["extract"] = result.to_dict(include_records=True)
        return result.records

    def _run_transformation(self, object_run: ObjectRun, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Run the transformation phase."""
        rules = self.config.mappings.get(object_run.object_id) or []
        engine = FieldMappingEngine(
            rules,
            pass_through=self.config.pass_through or not rules,
            converters=self.converters,
        )

        check = engine.validate_mappings(list(records[0].keys()) if records and rules else None)
        if not check["valid"]:
            raise ConfigurationError(
                f"Invalid mappings for {object_run.object_id}: {'; '.join(check['errors'])}",
                {"objectId": object_run.object_id},
            )

        transformed: List[Dict[str, Any]] = []
        for batch in self._batch_iterator(records, self.config.batch_size):
            transformed.extend(engine.apply_batch(batch))

        object_run.phases["transform"] = {
            "recordCount": len(transformed),
            "summary": engine.get_summary(),
            "warnings": check["warnings"],
            "records": transformed,
        }
        logger.info(f"Transformed {len(transformed)} records for {object_run.object_id}")
        return transformed

    def _run_validation(self, object_run: ObjectRun, records: List[Dict[str, Any]]) -> bool:
        """
        Run the validation phase.

        Returns:
            True when non-critical errors were found

        Raises:
            RecordValidationError: If a critical rule fired
        """
        object_id = object_run.object_id
        validator = self.validators.get(object_id) or RecordValidator(self.config.validation_rules.get(object_id))
        report = validator.validate_records(records)

        phase = report.to_dict()
        phase["errors"] = phase["errors"][: self.config.max_errors]

        quality_config = self.config.quality_checks.get(object_id)
        quality = self.quality_checker.check(records, quality_config) if quality_config else None
        if quality is not None:
            phase["quality"] = quality
        object_run.phases["validate"] = phase

        if report.status == "failed":
            raise RecordValidationError(
                f"Critical validation failure for {object_id} ({report.error_count} errors)",
                {"objectId": object_id, "errorCount": report.error_count},
            )
        return bool(report.error_count) or (quality is not None and quality["status"] == "errors")

    def _run_loading(self, object_run: ObjectRun, records: List[Dict[str, Any]]) -> str:
        """Run the loading phase; returns the load status."""
        if self.config.dry_run:
            logger.info(f"Dry run: skipping load of {len(records)} records for {object_run.object_id}")
            object_run.phases["load"] = {
                "status": ObjectStatus.SKIPPED.value,
                "dryRun": True,
                "recordCount": len(records),
            }
            return ObjectStatus.COMPLETED.value

        result = self.connector.load(object_run.object_id, records, batch_size=self.config.batch_size)
        object_run.phases["load"] = result.to_dict()
        return result.status

    def _batch_iterator(
        self,
        records: List[Dict[str, Any]],
        batch_size: int
    ) -> Iterator[List[Dict[str, Any]]]:
        """Iterate over records in batches."""
        for i in range(0, len(records), batch_size):
            yield records[i:i + batch_size]

    # Results

    def get_summary(self) -> Dict[str, Any]:
        state = self.state
        if state is None:
            return {"total": 0, "completed": 0, "failed": 0, "status": "idle"}
        return {
            "runId": state.run_id,
            "total": len(state.completed_objects) + len(state.failed_objects) + len(state.pending_objects),
            "completed": len(state.completed_objects),
            "failed": len(state.failed_objects),
            "status": state.status,
        }

    def reconcile(self) -> Dict[str, Any]:
        """Reconcile the captured extract/transform records of this run's objects."""
        results = []
        for object_id, object_run in self.object_runs.items():
            result = object_run.to_dict(include_records=True)
            if object_id in self.config.reconciliation:
                result["reconciliation"] = self.config.reconciliation[object_id]
            results.append(result)

        logger.info(f"=== RECONCILIATION: {len(results)} objects ===")
        self.reconciliation_report = self.reconciler.reconcile_all(results)
        return self.reconciliation_report

    def _save_checkpoint(self, state: RunState) -> None:
        checkpoint_state = state.to_dict()
        checkpoint_state["summary"] = self.get_summary()
        self.checkpoints.save(state.run_id, checkpoint_state)

    def _save_report(self, state: RunState) -> None:
        """Save the run report into the configured report directory."""
        report_dir = Path(self.config.report_dir)
        report_dir.mkdir(parents=True, exist_ok=True)

        filepath = report_dir / f"{state.run_id}.report.json"
        report = state.to_dict()
        report["summary"] = self.get_summary()
        report["finishedAt"] = datetime.utcnow().isoformat()
        if self.reconciliation_report is not None:
            report["reconciliation"] = self.reconciliation_report
        with open(filepath, "w") as f:
            json.dump(report, f, indent=2, default=str)
        logger.info(f"Saved migration report to {filepath}")
