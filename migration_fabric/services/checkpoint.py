"""File-backed checkpoints for resumable migration runs."""

import json
import logging
import os
import re
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1
CHECKPOINT_SUFFIX = ".checkpoint.json"
_SAFE_RUN_ID = re.compile(r"^[\w.-]+$")


class CheckpointManager:
    """
    One JSON document per run id in ``checkpoint_dir``.

    Documents look like::

        {"runId": "...", "timestamp": "...", "version": 1, "state": {...}}

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so readers only ever see whole documents.
    """

    def __init__(self, checkpoint_dir: str = "./checkpoints", clock: Optional[Callable[[], float]] = None):
        self.checkpoint_dir = Path(checkpoint_dir)
        self._clock = clock or time.time

    def _path(self, run_id: str) -> Path:
        if not run_id or not _SAFE_RUN_ID.match(run_id):
            raise ConfigurationError(f"Invalid run id: {run_id!r}", {"field": "runId"})
        return self.checkpoint_dir / f"{run_id}{CHECKPOINT_SUFFIX}"

    def save(self, run_id: str, state: Dict[str, Any]) -> Path:
        """
        Write (or overwrite) the checkpoint of a run.

        Args:
            run_id: Run identifier
            state: JSON-serializable run state

        Returns:
            Path of the checkpoint file
        """
        path = self._path(run_id)
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)

        document = {
            "runId": run_id,
            "timestamp": datetime.utcfromtimestamp(self._clock()).isoformat() + "Z",
            "version": CHECKPOINT_VERSION,
            "state": state,
        }
        payload = json.dumps(document, indent=2, default=str)

        fd, tmp_path = tempfile.mkstemp(prefix=f".{run_id}.", suffix=".tmp", dir=str(self.checkpoint_dir))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.debug(f"Saved checkpoint for run {run_id} to {path}")
        return path

    def load(self, run_id: str) -> Optional[Dict[str, Any]]:
        """
        Read the checkpoint of a run.

        Returns:
            The checkpoint document, or None when absent

        Raises:
            ConfigurationError: For documents written by a newer version
        """
        path = self._path(run_id)
        if not path.exists():
            return None

        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
        return self._upgrade(document, run_id)

    def _upgrade(self, document: Dict[str, Any], run_id: str) -> Dict[str, Any]:
        version = document.get("version")
        if version is None:
            logger.info(f"Upgrading unversioned checkpoint for run {run_id} to version {CHECKPOINT_VERSION}")
            document["version"] = CHECKPOINT_VERSION
            document.setdefault("runId", run_id)
            document.setdefault("state", {})
        elif version > CHECKPOINT_VERSION:
            raise ConfigurationError(
                f"Checkpoint version {version} is newer than supported version {CHECKPOINT_VERSION}",
                {"runId": run_id, "version": version},
            )
        return document

    def remove(self, run_id: str) -> bool:
        """Delete a run's checkpoint; returns whether one existed."""
        path = self._path(run_id)
        if path.exists():
            path.unlink()
            logger.info(f"Removed checkpoint for run {run_id}")
            return True
        return False

    def list(self) -> List[Dict[str, Any]]:
        """Known checkpoints as {runId, timestamp, path, modifiedAt}, newest first."""
        if not self.checkpoint_dir.exists():
            return []

        entries = []
        for path in self.checkpoint_dir.glob(f"*{CHECKPOINT_SUFFIX}"):
            run_id = path.name[: -len(CHECKPOINT_SUFFIX)]
            try:
                with open(path, "r", encoding="utf-8") as f:
                    timestamp = json.load(f).get("timestamp")
            except (OSError, ValueError) as e:
                logger.warning(f"Unreadable checkpoint {path}: {e}")
                timestamp = None
            entries.append({
                "runId": run_id,
                "timestamp": timestamp,
                "path": str(path),
                "modifiedAt": path.stat().st_mtime,
            })
        return sorted(entries, key=lambda e: e["modifiedAt"], reverse=True)

    def cleanup(self, max_age_days: float = 7) -> int:
        """Remove checkpoints older than ``max_age_days``; returns how many were removed."""
        cutoff = self._clock() - max_age_days * 86400
        removed = 0
        for entry in self.list():
            if entry["modifiedAt"] < cutoff:
                Path(entry["path"]).unlink()
                removed += 1
        if removed:
            logger.info(f"Cleaned up {removed} checkpoints older than {max_age_days} days")
        return removed
