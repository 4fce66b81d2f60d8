import json
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from core.job_types import SchedulerState

logger = logging.getLogger("core.state_store")


class StateStore:
    """
    Durable snapshot of the day's schedule and outcomes.

    The snapshot is a single JSON record rewritten wholesale on every change
    (temp file + atomic rename). Per-job run history is appended to
    ``runs/<job_id>.jsonl`` next to it for diagnostics.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.runs_dir = self.path.parent / "runs"

    def _ensure_dirs(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.runs_dir.mkdir(parents=True, exist_ok=True)

    def load(self) -> Optional[SchedulerState]:
        """Read the persisted snapshot. A missing or unreadable file means a fresh start."""
        if not self.path.exists():
            return None

        try:
            state = SchedulerState.model_validate_json(self.path.read_text(encoding="utf-8"))
            logger.info(f"Loaded scheduler state for {state.date} ({len(state.jobs)} jobs)")
            return state
        except (OSError, ValidationError, ValueError) as e:
            logger.error(f"Failed to load scheduler state, starting fresh: {e}")
            return None

    def save(self, state: SchedulerState, saved_at: Optional[datetime] = None) -> bool:
        """Replace the snapshot on disk."""
        state.last_saved = saved_at or datetime.now().astimezone()
        tmp_file = self.path.with_suffix(".tmp")
        try:
            self._ensure_dirs()
            tmp_file.write_text(state.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
            os.replace(tmp_file, self.path)
            return True
        except OSError as e:
            logger.error(f"Failed to save scheduler state: {e}")
            return False

    def log_run(self, job_id: str, payload: dict):
        """Append one execution record for a job."""
        log_file = self.runs_dir / f"{job_id}.jsonl"
        payload["timestamp"] = time.time()
        try:
            self._ensure_dirs()
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(payload, default=str) + "\n")
        except OSError as e:
            logger.error(f"Failed to log run for job {job_id}: {e}")
