"""Explicit progress updates for festival tasks.

Every status change goes through :class:`ProgressManager`. Content-derived
status is never written back here; only explicit calls mutate the store.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import List, Optional

from .config import ProgressConfig
from .errors import NotFoundError, ValidationError, check_cancelled
from .festival_logging import (
    log_error_with_context,
    log_operation,
    log_performance,
    log_task_event,
    observability_hooks,
)
from .filetime import get_file_mod_time
from .models import (
    STATUS_BLOCKED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    FestivalTimeMetrics,
    TaskProgress,
    minutes_between,
    utcnow,
)
from .store import ProgressStore

logger = logging.getLogger("festprogress.manager")


class ProgressManager:
    """Applies explicit progress updates to a festival's store."""

    def __init__(
        self,
        festival_path: Path | str,
        config: Optional[ProgressConfig] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.festival_path = Path(festival_path)
        self.config = config or ProgressConfig()
        self.cancel = cancel
        self._store = ProgressStore(self.festival_path, self.config)
        self._store.load(cancel)

    @property
    def store(self) -> ProgressStore:
        return self._store

    @property
    def festival_name(self) -> str:
        return self.festival_path.name

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _task_file_mod_time(self, task_id: str):
        """Task file mtime, or now when the file cannot be stat'd."""
        return get_file_mod_time(self.festival_path / task_id) or utcnow()

    def _get_or_create(self, task_id: str, status: str = "") -> TaskProgress:
        """Detached record to mutate under the canonical key.

        The store is not touched until :meth:`_commit`. A record found only
        under its legacy filename key is copied to the canonical key; the
        legacy entry itself is left in place.
        """
        task, found = self._store.get_task_progress(task_id)
        if not found:
            return TaskProgress(task_id=task_id, status=status)
        working = task.copy()
        if task.task_id != task_id:
            logger.info(f"Promoting legacy record '{task.task_id}' to '{task_id}'")
            working.task_id = task_id
        return working

    def _rollback(self, task_id: str, previous: Optional[TaskProgress], metrics: Optional[FestivalTimeMetrics]) -> None:
        if previous is None:
            self._store.data.tasks.pop(task_id, None)
        else:
            self._store.set_task(previous)
        self._store.set_time_metrics(metrics)

    def _commit(self, task: TaskProgress, event_type: str, **event_data) -> TaskProgress:
        """Apply a mutated record and save; in-memory state is restored if the save fails."""
        previous = self._store.get_task(task.task_id)
        previous_metrics = self._store.get_time_metrics()

        self._store.set_task(task)
        if previous_metrics is not None:
            self._store.set_time_metrics(previous_metrics.copy())
        try:
            self._store.update_total_work_minutes()
            festival_completed = self._store.check_and_set_completion()
            path = self._store.save(self.cancel)
        except Exception:
            self._rollback(task.task_id, previous, previous_metrics)
            raise

        log_task_event(
            event_type,
            self.festival_name,
            task.task_id,
            status=task.status,
            progress=task.progress,
            **event_data,
        )
        observability_hooks.log_progress_event(
            "progress_saved",
            festival=self.festival_name,
            path=str(path),
            task_count=len(self._store.data.tasks),
        )
        if festival_completed:
            logger.info(f"Festival '{self.festival_name}' completed")
        return task

    @staticmethod
    def _clear_blocker_fields(task: TaskProgress) -> None:
        task.blocker_message = ""
        task.blocked_at = None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @log_performance("update_progress")
    def update_progress(self, task_id: str, progress: int) -> TaskProgress:
        """Set a task's percentage, moving it to in_progress or completed as needed."""
        try:
            check_cancelled(self.cancel, "update_progress")
            if progress < 0 or progress > 100:
                raise ValidationError(
                    "progress must be between 0 and 100", op="update_progress"
                ).with_field("progress", progress)

            with log_operation("update_progress", task_id=task_id, progress=progress):
                task = self._get_or_create(task_id, STATUS_PENDING)

                # no explicit start: the file's last edit is the best estimate
                if task.started_at is None:
                    task.started_at = self._task_file_mod_time(task_id)

                if progress > 0 and task.status in ("", STATUS_PENDING):
                    task.status = STATUS_IN_PROGRESS

                if progress == 100:
                    now = utcnow()
                    task.status = STATUS_COMPLETED
                    task.completed_at = now
                    task.time_spent_minutes = minutes_between(task.started_at, now)

                task.progress = progress

                if progress > 0 and task.blocker_message:
                    self._clear_blocker_fields(task)

                return self._commit(task, "progress_updated")

        except Exception as e:
            log_error_with_context(e, {
                "operation": "update_progress",
                "festival": self.festival_name,
                "task_id": task_id,
                "progress": progress,
            })
            raise

    @log_performance("mark_complete")
    def mark_complete(self, task_id: str) -> TaskProgress:
        """Mark a task completed. Completing an already completed task changes nothing."""
        try:
            check_cancelled(self.cancel, "mark_complete")

            with log_operation("mark_complete", task_id=task_id):
                existing = self._store.get_task(task_id)
                if existing is not None and existing.status == STATUS_COMPLETED and not existing.blocker_message:
                    logger.debug(f"Task '{task_id}' already completed")
                    return existing

                task = self._get_or_create(task_id)
                now = utcnow()
                if task.started_at is None:
                    task.started_at = self._task_file_mod_time(task_id)

                task.status = STATUS_COMPLETED
                task.progress = 100
                task.completed_at = now
                task.time_spent_minutes = minutes_between(task.started_at, now)
                self._clear_blocker_fields(task)

                return self._commit(task, "task_completed", time_spent_minutes=task.time_spent_minutes)

        except Exception as e:
            log_error_with_context(e, {
                "operation": "mark_complete",
                "festival": self.festival_name,
                "task_id": task_id,
            })
            raise

    @log_performance("mark_in_progress")
    def mark_in_progress(self, task_id: str) -> TaskProgress:
        """Mark a task as being worked on, starting its clock if needed."""
        try:
            check_cancelled(self.cancel, "mark_in_progress")

            with log_operation("mark_in_progress", task_id=task_id):
                task = self._get_or_create(task_id)
                if task.started_at is None:
                    task.started_at = utcnow()
                task.status = STATUS_IN_PROGRESS
                return self._commit(task, "task_started")

        except Exception as e:
            log_error_with_context(e, {
                "operation": "mark_in_progress",
                "festival": self.festival_name,
                "task_id": task_id,
            })
            raise

    @log_performance("report_blocker")
    def report_blocker(self, task_id: str, message: str) -> TaskProgress:
        """Record a blocker. The stored status is left as it was."""
        try:
            check_cancelled(self.cancel, "report_blocker")
            if not message or not message.strip():
                raise ValidationError("blocker message required", op="report_blocker")

            with log_operation("report_blocker", task_id=task_id):
                task = self._get_or_create(task_id, STATUS_PENDING)
                now = utcnow()
                task.blocker_message = message
                task.blocked_at = now
                if task.started_at is None:
                    task.started_at = now
                return self._commit(task, "blocker_reported", blocker_message=message)

        except Exception as e:
            log_error_with_context(e, {
                "operation": "report_blocker",
                "festival": self.festival_name,
                "task_id": task_id,
            })
            raise

    @log_performance("clear_blocker")
    def clear_blocker(self, task_id: str) -> TaskProgress:
        """Remove a task's blocker; a stored legacy blocked status becomes in_progress."""
        try:
            check_cancelled(self.cancel, "clear_blocker")
            task, found = self._store.get_task_progress(task_id)
            if not found:
                raise NotFoundError("task not found", op="clear_blocker").with_field("task_id", task_id)

            if not task.blocker_message and task.status != STATUS_BLOCKED:
                return task

            with log_operation("clear_blocker", task_id=task_id):
                task = self._get_or_create(task_id)
                self._clear_blocker_fields(task)
                if task.status == STATUS_BLOCKED:
                    task.status = STATUS_IN_PROGRESS
                return self._commit(task, "blocker_cleared")

        except Exception as e:
            log_error_with_context(e, {
                "operation": "clear_blocker",
                "festival": self.festival_name,
                "task_id": task_id,
            })
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task_progress(self, task_id: str) -> Optional[TaskProgress]:
        task, found = self._store.get_task_progress(task_id)
        return task if found else None

    def all_task_progress(self) -> List[TaskProgress]:
        return self._store.all_tasks()
