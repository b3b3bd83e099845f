"""Persistence for festival progress data.

Progress lives in ``<festival>/.fest/progress.yaml``: a single YAML
document mapping canonical task IDs (festival-relative, forward-slash
paths) to progress records, plus festival-level time metrics.

The store assumes a single writer. Two processes saving the same
festival concurrently can overwrite each other; no file locking is done.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path, PurePosixPath
from typing import Iterator, List, Optional, Tuple

import yaml

from .config import ProgressConfig
from .errors import FestIOError, ParseError, ValidationError, check_cancelled
from .filetime import infer_task_time
from .models import (
    STATUS_COMPLETED,
    FestivalProgressData,
    FestivalTimeMetrics,
    TaskProgress,
    utcnow,
)

logger = logging.getLogger("festprogress.store")


def legacy_key(task_id: str) -> str:
    """Bare filename key used by records written before canonical IDs existed."""
    return PurePosixPath(task_id.replace("\\", "/")).name


class ProgressStore:
    """In-memory view of a festival's progress file with load/save."""

    def __init__(self, festival_path: Path | str, config: Optional[ProgressConfig] = None):
        self.festival_path = Path(festival_path)
        self.config = config or ProgressConfig()
        self._data: Optional[FestivalProgressData] = None

    @property
    def progress_file_path(self) -> Path:
        """Path to the persisted progress document."""
        return self.festival_path / self.config.progress_dir / self.config.progress_file

    @property
    def festival_name(self) -> str:
        return self.festival_path.name

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def load(self, cancel: Optional[threading.Event] = None) -> None:
        """Read the progress file; a missing file yields an empty store."""
        check_cancelled(cancel, "progress.load")

        path = self.progress_file_path
        if not path.exists():
            now = utcnow()
            self._data = FestivalProgressData(
                festival=self.festival_name,
                updated_at=now,
                time_metrics=FestivalTimeMetrics(created_at=now),
            )
            logger.debug(f"No progress file at {path}, starting empty")
            return

        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise FestIOError("reading progress file", cause=e, fields={"path": str(path)}) from e

        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ParseError("parsing progress file", cause=e, fields={"path": str(path)}) from e

        if raw is None:
            raw = {}
        try:
            self._data = FestivalProgressData.from_dict(raw, festival=self.festival_name)
        except (TypeError, ValueError) as e:
            raise ParseError("invalid progress data", cause=e, fields={"path": str(path)}) from e

        logger.debug(f"Loaded {len(self._data.tasks)} task records from {path}")

    def save(self, cancel: Optional[threading.Event] = None) -> Path:
        """Write the in-memory data back to the progress file."""
        check_cancelled(cancel, "progress.save")

        if self._data is None:
            raise ValidationError("no progress data to save", op="progress.save")

        self._data.updated_at = utcnow()
        content = yaml.safe_dump(
            self._data.to_dict(),
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )

        path = self.progress_file_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FestIOError("creating progress directory", cause=e, fields={"path": str(path.parent)}) from e
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise FestIOError("writing progress file", cause=e, fields={"path": str(path)}) from e

        logger.debug(f"Saved {len(self._data.tasks)} task records to {path}")
        return path

    @property
    def data(self) -> FestivalProgressData:
        """The loaded document, created empty on first access if load was skipped."""
        if self._data is None:
            self._data = FestivalProgressData(festival=self.festival_name)
        return self._data

    # ------------------------------------------------------------------
    # Task records
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> Optional[TaskProgress]:
        """Exact lookup under a single key."""
        if self._data is None:
            return None
        return self._data.tasks.get(task_id)

    def lookup_keys(self, task_id: str) -> Iterator[Tuple[str, bool]]:
        """Keys tried by :meth:`get_task_progress`, as ``(key, is_legacy)``.

        The canonical ID comes first. The bare-filename legacy key is a
        read-only fallback: records found through it are copied to the
        canonical key on the next write, after which the legacy entry is
        no longer consulted for that task.
        """
        yield task_id, False
        legacy = legacy_key(task_id)
        if legacy and legacy != task_id:
            yield legacy, True

    def get_task_progress(self, task_id: str) -> Tuple[Optional[TaskProgress], bool]:
        """Two-tier lookup: canonical key, then legacy bare-filename key."""
        for key, is_legacy in self.lookup_keys(task_id):
            task = self.get_task(key)
            if task is not None:
                if is_legacy:
                    logger.debug(f"Resolved '{task_id}' through legacy key '{key}'")
                return task, True
        return None, False

    def set_task(self, task: TaskProgress) -> None:
        """Insert or replace a record by its task ID."""
        self.data.tasks[task.task_id] = task

    def all_tasks(self) -> List[TaskProgress]:
        """All records sorted by task ID."""
        if self._data is None:
            return []
        return [self._data.tasks[key] for key in sorted(self._data.tasks)]

    # ------------------------------------------------------------------
    # Festival time metrics
    # ------------------------------------------------------------------

    def get_time_metrics(self) -> Optional[FestivalTimeMetrics]:
        if self._data is None:
            return None
        return self._data.time_metrics

    def set_time_metrics(self, metrics: FestivalTimeMetrics) -> None:
        self.data.time_metrics = metrics

    def ensure_time_metrics(self) -> FestivalTimeMetrics:
        """Return the time metrics, creating them when absent."""
        if self.data.time_metrics is None:
            self.data.time_metrics = FestivalTimeMetrics(created_at=utcnow())
        return self.data.time_metrics

    def update_total_work_minutes(self) -> int:
        """Recompute total work minutes from every task record."""
        total = sum(task.time_spent_minutes for task in self.data.tasks.values())
        self.ensure_time_metrics().total_work_minutes = total
        return total

    def mark_festival_completed(self) -> None:
        metrics = self.ensure_time_metrics()
        metrics.completed_at = utcnow()
        metrics.lifecycle_duration_days = metrics.calculate_lifecycle_duration()

    def is_festival_complete(self) -> bool:
        """True when there is at least one record and every record is completed."""
        tasks = self.all_tasks()
        if not tasks:
            return False
        return all(task.status == STATUS_COMPLETED for task in tasks)

    def check_and_set_completion(self) -> bool:
        """Stamp festival completion once; returns True only on the first stamp."""
        if not self.is_festival_complete():
            return False
        metrics = self.get_time_metrics()
        if metrics is not None and metrics.completed_at is not None:
            return False
        self.mark_festival_completed()
        self.update_total_work_minutes()
        return True

    def lazy_populate_time_data(self) -> int:
        """Stamp bare completed records with their file timestamps.

        Returns the number of records changed. Records that already carry
        any time field are left alone. Nothing is saved.
        """
        updated = 0
        for task in self.all_tasks():
            if infer_task_time(self.festival_path / task.task_id, task):
                updated += 1

        if updated:
            self.update_total_work_minutes()
        return updated
