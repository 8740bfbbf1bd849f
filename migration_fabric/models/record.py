"""Per-object run records produced by the migration pipeline."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime

MAX_LOAD_ERRORS = 50


class ObjectStatus(str, Enum):
    """Final status of a migration object within a run."""
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class ObjectPhase(str, Enum):
    """Pipeline state of a migration object."""
    IDLE = "idle"
    EXTRACTING = "extracting"
    TRANSFORMING = "transforming"
    VALIDATING = "validating"
    LOADING = "loading"
    DONE = "done"
    ERROR = "error"


@dataclass
class ValidationIssue:
    """A validation finding on a single record."""
    field: str
    message: str
    rule: str = "custom"
    severity: str = "error"  # error, warning
    value: Optional[Any] = None
    record_index: Optional[int] = None
    critical: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field": self.field,
            "message": self.message,
            "rule": self.rule,
            "severity": self.severity,
            "value": self.value,
            "recordIndex": self.record_index,
            "critical": self.critical,
        }


@dataclass
class LoadError:
    """A single record that the target rejected."""
    index: int
    message: str
    status_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "message": self.message, "statusCode": self.status_code}


@dataclass
class LoadResult:
    """Outcome of loading one object's records into the target."""
    record_count: int = 0
    success_count: int = 0
    error_count: int = 0
    errors: List[LoadError] = field(default_factory=list)
    batches: int = 0
    batch_size: int = 500
    duration_ms: int = 0
    batch_error: Optional[str] = None

    @property
    def status(self) -> str:
        if self.batch_error or (self.record_count > 0 and self.success_count == 0):
            return ObjectStatus.FAILED.value
        if self.error_count > 0:
            return ObjectStatus.COMPLETED_WITH_ERRORS.value
        return ObjectStatus.COMPLETED.value

    def add_error(self, index: int, message: str, status_code: Optional[int] = None) -> None:
        """Count an error; only the first entries are kept."""
        self.error_count += 1
        if len(self.errors) < MAX_LOAD_ERRORS:
            self.errors.append(LoadError(index=index, message=message, status_code=status_code))

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "status": self.status,
            "recordCount": self.record_count,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "errors": [e.to_dict() for e in self.errors],
            "batches": self.batches,
            "batchSize": self.batch_size,
            "durationMs": self.duration_ms,
        }
        if self.batch_error:
            result["batchError"] = self.batch_error
        return result


@dataclass
class ObjectRun:
    """
    Run record of one migration object.

    ``phases`` holds the serialized output of each phase keyed by
    ``extract``/``transform``/``validate``/``load``.
    """
    object_id: str
    status: ObjectStatus = ObjectStatus.RUNNING
    phase: ObjectPhase = ObjectPhase.IDLE
    phases: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def duration_ms(self) -> int:
        if not self.finished_at:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def finish(self, status: ObjectStatus) -> "ObjectRun":
        self.status = status
        self.phase = ObjectPhase.ERROR if status == ObjectStatus.FAILED else ObjectPhase.DONE
        self.finished_at = datetime.utcnow()
        return self

    def to_dict(self, include_records: bool = False) -> Dict[str, Any]:
        """
        Convert to dictionary representation.

        Args:
            include_records: Keep captured extract/transform records (large)
        """
        phases = {}
        for name, data in self.phases.items():
            if include_records:
                phases[name] = dict(data)
            else:
                phases[name] = {k: v for k, v in data.items() if k != "records"}

        result = {
            "objectId": self.object_id,
            "status": self.status.value,
            "phase": self.phase.value,
            "phases": phases,
            "stats": {
                "durationMs": self.duration_ms,
                "startedAt": self.started_at.isoformat(),
                "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            },
        }
        if self.error:
            result["error"] = self.error
        return result

