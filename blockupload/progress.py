"""
Caller-side persistence of upload progress.

The uploader itself keeps progress in memory only. ``ProgressLog`` writes the
per-block results to a JSON file so that a later process can resume.
"""

import json
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .blocks import block_count
from .models import BlockResult


class ProgressLog:
    """Persists upload progress to a JSON file for resumability.

    The log is never deleted on success; it is stamped with completed=true
    instead, so re-runs skip files that were already committed.
    """

    SCHEMA_VERSION = 1

    def __init__(self, path: Path, save_interval: float = 5.0) -> None:
        self.path = path
        self.save_interval = save_interval
        self._lock = threading.Lock()
        self._last_save = 0.0
        self.data: dict = {
            "schema_version": self.SCHEMA_VERSION,
            "file_path": "",
            "file_size": 0,
            "key": None,
            "block_count": 0,
            "progresses": [],
            "completed": False,       # True once the object is finalized
            "completed_at": None,
            "started_at": None,
            "updated_at": None,
        }
        self.progresses: List[BlockResult] = []

    @property
    def is_completed(self) -> bool:
        return bool(self.data.get("completed", False))

    def load(self) -> bool:
        """Load existing progress. Returns True if valid data found."""
        if not self.path.exists():
            return False
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                loaded = json.load(fh)
            self.data.update(loaded)
            self.progresses = [BlockResult.from_dict(p) for p in self.data["progresses"]]
            return True
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            return False

    def matches(self, file_path: str, file_size: int, key: Optional[str]) -> bool:
        return (
            self.data.get("file_path") == file_path
            and self.data.get("file_size") == file_size
            and self.data.get("key") == key
            and len(self.progresses) == block_count(file_size)
        )

    def reset(self, file_size: int) -> None:
        self.progresses = [BlockResult() for _ in range(block_count(file_size))]
        self.data["completed"] = False
        self.data["completed_at"] = None

    def save(self) -> None:
        with self._lock:
            self.data["progresses"] = [p.to_dict() for p in self.progresses]
            self.data["updated_at"] = datetime.now(timezone.utc).isoformat()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".tmp")
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(self.data, fh, indent=2)
            tmp.replace(self.path)  # atomic rename
            self._last_save = time.monotonic()

    def mark_started(self, file_path: str, file_size: int, key: Optional[str]) -> None:
        self.data.update(
            {
                "file_path": file_path,
                "file_size": file_size,
                "key": key,
                "block_count": block_count(file_size),
                "started_at": self.data["started_at"]
                or datetime.now(timezone.utc).isoformat(),
            }
        )
        self.save()

    def mark_completed(self) -> None:
        """Stamp the log as fully done. Kept on disk so re-runs skip this file."""
        self.data["completed"] = True
        self.data["completed_at"] = datetime.now(timezone.utc).isoformat()
        self.save()

    def on_block(self, blk_idx: int, blk_size: int, ret: BlockResult) -> None:
        """``notify`` callback.

        Saves when a block finishes; partial progress is saved at most once per
        ``save_interval`` seconds.
        """
        if ret.offset >= blk_size or time.monotonic() - self._last_save >= self.save_interval:
            self.save()
