"""File modification times and timestamp-based time inference."""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from typing import Dict, Optional

from .models import STATUS_COMPLETED, TaskProgress

logger = logging.getLogger("festprogress.filetime")


def get_file_mod_time(path: str | os.PathLike) -> Optional[datetime]:
    """Modification time as an aware UTC datetime, None if the file cannot be stat'd."""
    try:
        mtime = os.stat(path).st_mtime
    except OSError:
        return None
    return datetime.fromtimestamp(mtime, tz=timezone.utc)


class FileTimeCache:
    """Thread-safe memo of file modification times for a single pass.

    Missing files are cached as None, so repeated lookups do not re-stat.
    """

    def __init__(self):
        self._cache: Dict[str, Optional[datetime]] = {}
        self._lock = threading.Lock()

    def get_mod_time(self, path: str | os.PathLike) -> Optional[datetime]:
        key = os.fspath(path)
        with self._lock:
            if key in self._cache:
                return self._cache[key]

        mod_time = get_file_mod_time(key)

        with self._lock:
            self._cache[key] = mod_time
        return mod_time

    def invalidate(self, path: str | os.PathLike) -> None:
        with self._lock:
            self._cache.pop(os.fspath(path), None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._cache)


def has_time_data(task: TaskProgress) -> bool:
    return (
        task.time_spent_minutes > 0
        or task.started_at is not None
        or task.completed_at is not None
    )


def needs_time_inference(task: Optional[TaskProgress]) -> bool:
    """True for completed records that carry no time field at all."""
    if task is None:
        return False
    if task.status != STATUS_COMPLETED:
        return False
    return not has_time_data(task)


def infer_task_time(task_path: str | os.PathLike, task: TaskProgress) -> bool:
    """Stamp a bare completed record with the file's modification time.

    Records that already carry minutes, a start or a completion stamp are
    never touched. The file time is the only signal, so start and
    completion are both set to it and no minutes are recorded. Returns
    True when the record changed.
    """
    if not needs_time_inference(task):
        return False

    mod_time = get_file_mod_time(task_path)
    if mod_time is None:
        return False

    task.completed_at = mod_time
    task.started_at = mod_time
    logger.debug(f"Stamped {task.task_id} with file time {mod_time.isoformat()}")
    return True
