import json
import logging
import os
import fcntl
from pathlib import Path
from typing import Optional
from .models import MirrorState
from .config import settings

logger = logging.getLogger(__name__)

class StateManager:
    def __init__(self, path: str, persist: Optional[bool] = None):
        self.path = Path(path)
        self.state = MirrorState()
        self.persist = settings.PERSIST_ENABLED if persist is None else persist
        self.read_only = False
        self._load()

    def _load(self):
        if not self.path.exists():
            logger.info(f"No state file found at {self.path}, creating new.")
            return

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
                self.state = MirrorState(**data)
        except Exception as e:
            logger.error(f"Failed to load state: {e}. Starting fresh.", exc_info=True)

    def save(self):
        if not self.persist or self.read_only:
            return

        tmp_path = self.path.with_suffix('.tmp')
        try:
            with open(tmp_path, 'w') as f:
                try:
                    fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    logger.warning("Could not acquire lock for state save. Skipping save cycle.")
                    return

                try:
                    json.dump(self.state.model_dump(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)

            os.rename(tmp_path, self.path)

        except OSError as e:
            logger.error(f"Failed to save state to {self.path}: {e}")
            # Stay read-only for the rest of this run
            self.read_only = True

    def record_success(self, at: float, file_count: int, downloaded: int, removed: int):
        s = self.state
        s.last_attempt_at = at
        s.last_successful_sync = at
        s.last_error = None
        s.consecutive_failures = 0
        s.last_file_count = file_count
        s.total_downloaded += downloaded
        s.total_removed += removed
        self.save()

    def record_failure(self, at: float, error: str):
        s = self.state
        s.last_attempt_at = at
        s.last_error = error
        s.consecutive_failures += 1
        self.save()

    def set_paused(self, paused: bool):
        self.state.paused = paused
        self.save()
