"""Migration run configuration and resumable run state."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum
from datetime import datetime
import uuid


class RunStatus(str, Enum):
    """Aggregate status of a migration run."""
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"


def new_run_id() -> str:
    return f"run-{datetime.utcnow().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}"


@dataclass
class MigrationConfig:
    """Runtime options of the migration orchestrator."""
    name: str = "migration"

    # Scope
    objects: List[str] = field(default_factory=list)
    modules: List[str] = field(default_factory=list)
    module_objects: Dict[str, List[str]] = field(default_factory=dict)  # Module -> object ids
    dependencies: Dict[str, List[str]] = field(default_factory=dict)  # Object -> prerequisites

    # Execution options
    batch_size: int = 500
    max_records: Optional[int] = None
    dry_run: bool = False
    fail_fast: Union[bool, List[str]] = False
    max_errors: int = 50
    cutoff_date: Optional[str] = None
    cutoff_field: str = "CreationDate"
    cutoff_fields: Dict[str, str] = field(default_factory=dict)  # Object -> date field

    # Transform and validate
    mappings: Dict[str, List[Any]] = field(default_factory=dict)  # Object -> mapping rules
    pass_through: bool = False
    validation_rules: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    quality_checks: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    # Reconciliation
    reconcile: bool = False
    reconciliation: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)  # Object -> keys/values/aggregates
    tolerances: Dict[str, Any] = field(default_factory=dict)

    # Output
    checkpoint_dir: str = "./checkpoints"
    report_dir: Optional[str] = None

    def is_fail_fast(self, object_id: str) -> bool:
        if isinstance(self.fail_fast, bool):
            return self.fail_fast
        return object_id in self.fail_fast

    def cutoff_field_for(self, object_id: str) -> str:
        return self.cutoff_fields.get(object_id, self.cutoff_field)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary (mapping callables are dropped)."""
        return {
            "name": self.name,
            "objects": list(self.objects),
            "modules": list(self.modules),
            "moduleObjects": self.module_objects,
            "dependencies": self.dependencies,
            "batchSize": self.batch_size,
            "maxRecords": self.max_records,
            "dryRun": self.dry_run,
            "failFast": self.fail_fast,
            "maxErrors": self.max_errors,
            "cutoffDate": self.cutoff_date,
            "cutoffField": self.cutoff_field,
            "cutoffFields": self.cutoff_fields,
            "mappings": {
                obj: [r.to_dict() if hasattr(r, "to_dict") else r for r in rules]
                for obj, rules in self.mappings.items()
            },
            "passThrough": self.pass_through,
            "validationRules": self.validation_rules,
            "qualityChecks": self.quality_checks,
            "reconcile": self.reconcile,
            "reconciliation": self.reconciliation,
            "tolerances": self.tolerances,
            "checkpointDir": self.checkpoint_dir,
            "reportDir": self.report_dir,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from a dictionary using camelCase or snake_case keys."""
        def pick(camel: str, snake: str, default: Any = None) -> Any:
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        return cls(
            name=data.get("name", "migration"),
            objects=list(data.get("objects") or []),
            modules=list(data.get("modules") or []),
            module_objects=pick("moduleObjects", "module_objects") or {},
            dependencies=data.get("dependencies") or {},
            batch_size=pick("batchSize", "batch_size", 500),
            max_records=pick("maxRecords", "max_records"),
            dry_run=pick("dryRun", "dry_run", False),
            fail_fast=pick("failFast", "fail_fast", False),
            max_errors=pick("maxErrors", "max_errors", 50),
            cutoff_date=pick("cutoffDate", "cutoff_date"),
            cutoff_field=pick("cutoffField", "cutoff_field", "CreationDate"),
            cutoff_fields=pick("cutoffFields", "cutoff_fields") or {},
            mappings=data.get("mappings") or {},
            pass_through=pick("passThrough", "pass_through", False),
            validation_rules=pick("validationRules", "validation_rules") or {},
            quality_checks=pick("qualityChecks", "quality_checks") or {},
            reconcile=data.get("reconcile", False),
            reconciliation=data.get("reconciliation") or {},
            tolerances=data.get("tolerances") or {},
            checkpoint_dir=pick("checkpointDir", "checkpoint_dir", "./checkpoints"),
            report_dir=pick("reportDir", "report_dir"),
        )

    @classmethod
    def from_project(cls, project: Any) -> "MigrationConfig":
        """Build runtime options from a validated ``ProjectConfig``."""
        data = project.model_dump()
        data["tolerances"] = project.tolerances.model_dump()
        return cls.from_dict(data)


@dataclass
class RunState:
    """Resumable state of a run, mirrored into its checkpoint."""
    run_id: str = field(default_factory=new_run_id)
    status: str = RunStatus.RUNNING.value
    completed_objects: List[str] = field(default_factory=list)
    failed_objects: List[str] = field(default_factory=list)
    pending_objects: List[str] = field(default_factory=list)
    results: List[Dict[str, Any]] = field(default_factory=list)
    started_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    config: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "status": self.status,
            "completedObjects": list(self.completed_objects),
            "failedObjects": list(self.failed_objects),
            "pendingObjects": list(self.pending_objects),
            "results": list(self.results),
            "startedAt": self.started_at,
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, run_id: str, data: Dict[str, Any]) -> "RunState":
        return cls(
            run_id=data.get("runId", run_id),
            status=data.get("status", RunStatus.RUNNING.value),
            completed_objects=list(data.get("completedObjects") or []),
            failed_objects=list(data.get("failedObjects") or []),
            pending_objects=list(data.get("pendingObjects") or []),
            results=list(data.get("results") or []),
            started_at=data.get("startedAt") or datetime.utcnow().isoformat(),
            config=data.get("config") or {},
        )
