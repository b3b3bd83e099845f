"""Result payloads for festival progress operations.

This module is the calling layer on top of the engine: it parses user
input (task references, percentages), runs the engine operation and turns
the outcome into a plain dictionary for the tool surface. Engine errors
come back as ``{"success": False, "error": ..., "code": ...}`` payloads
instead of propagating.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .aggregate import ProgressAggregator
from .classifier import classify_path, matching_rule
from .config import ProgressConfig
from .errors import ERR_INTERNAL, ValidationError
from .festival_logging import log_error_with_context, log_performance
from .filetime import FileTimeCache
from .manager import ProgressManager
from .markdown import EMOJI_BLOCKED, EMOJI_COMPLETED, EMOJI_IN_PROGRESS, EMOJI_NOT_STARTED
from .migrate import migrate_times, summarize_results
from .models import (
    STATUS_BLOCKED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    AggregateProgress,
    FestivalProgress,
    format_duration_with_status,
)
from .resolve import (
    resolve_task_progress,
    resolve_task_reference,
    resolve_task_status,
    resolve_task_time,
)

logger = logging.getLogger("festprogress.workflow")

STATUS_ICONS = {
    STATUS_COMPLETED: EMOJI_COMPLETED,
    STATUS_IN_PROGRESS: EMOJI_IN_PROGRESS,
    STATUS_BLOCKED: EMOJI_BLOCKED,
    STATUS_PENDING: EMOJI_NOT_STARTED,
}

_ANSI_GREEN = "\033[32m"
_ANSI_YELLOW = "\033[33m"
_ANSI_DIM = "\033[2m"
_ANSI_RESET = "\033[0m"


def parse_percentage(value: Union[str, int]) -> int:
    """Parse ``"50%"``, ``"50"`` or ``50`` into an integer percentage."""
    if isinstance(value, bool):
        raise ValidationError("invalid percentage").with_field("value", value)
    if isinstance(value, int):
        pct = value
    else:
        text = str(value).strip()
        if text.endswith("%"):
            text = text[:-1]
        try:
            pct = int(text)
        except ValueError:
            raise ValidationError("invalid percentage").with_field("value", text) from None
    if pct < 0 or pct > 100:
        raise ValidationError("percentage must be 0-100").with_field("value", pct)
    return pct


def status_for_progress(percentage: int) -> str:
    """Display status implied by a bare percentage."""
    if percentage >= 100:
        return STATUS_COMPLETED
    if percentage > 0:
        return STATUS_IN_PROGRESS
    return STATUS_PENDING


def format_minutes(minutes: int) -> str:
    if minutes <= 0:
        return "0m"
    hours, rest = divmod(minutes, 60)
    if hours and rest:
        return f"{hours}h {rest}m"
    if hours:
        return f"{hours}h"
    return f"{rest}m"


def render_progress_bar(percentage: int, width: int = 20, no_color: bool = False) -> str:
    """Text progress bar, e.g. ``[██████░░░░] 60%``."""
    percentage = max(0, min(100, percentage))
    filled = width * percentage // 100
    bar = "█" * filled + "░" * (width - filled)
    if not no_color:
        if percentage >= 100:
            color = _ANSI_GREEN
        elif percentage > 0:
            color = _ANSI_YELLOW
        else:
            color = _ANSI_DIM
        bar = f"{color}{bar}{_ANSI_RESET}"
    return f"[{bar}] {percentage}%"


class ProgressWorkflow:
    """Progress operations for one festival, returning plain result dictionaries."""

    def __init__(
        self,
        festival_path: Path | str,
        config: Optional[ProgressConfig] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.festival_path = Path(festival_path).resolve()
        self.config = config or ProgressConfig()
        self.cancel = cancel

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _manager(self) -> ProgressManager:
        """Fresh manager so every call sees the latest saved progress."""
        return ProgressManager(self.festival_path, self.config, self.cancel)

    def _aggregator(self) -> ProgressAggregator:
        manager = self._manager()
        return ProgressAggregator(manager.store, self.festival_path, self.config, self.cancel)

    def _scope_path(self, *parts: str) -> Path:
        path = self.festival_path.joinpath(*parts).resolve()
        if path != self.festival_path and self.festival_path not in path.parents:
            raise ValidationError("path is outside festival").with_field("path", str(path))
        return path

    def _error(self, operation: str, error: Exception, suggestion: str, **context) -> Dict[str, Any]:
        log_error_with_context(error, {"operation": operation, "festival": self.festival_path.name, **context})
        payload: Dict[str, Any] = {
            "success": False,
            "error": str(error),
            "code": getattr(error, "code", ERR_INTERNAL),
            "suggestion": suggestion,
            "message": f"Error: {error}",
        }
        fields = getattr(error, "fields", None)
        if fields:
            payload["details"] = dict(fields)
        return payload

    def _snapshot_payload(self, progress: AggregateProgress) -> Dict[str, Any]:
        data = progress.to_dict()
        data["bar"] = render_progress_bar(progress.percentage, no_color=self.config.no_color)
        data["time_spent"] = format_minutes(progress.time_spent_minutes)
        return data

    # ------------------------------------------------------------------
    # Single tasks
    # ------------------------------------------------------------------

    def task_progress(
        self,
        task_id: Optional[str] = None,
        *,
        phase: Optional[str] = None,
        sequence: Optional[str] = None,
        task_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Resolved status, progress and time for one task."""
        try:
            canonical = resolve_task_reference(
                self.festival_path, task_id,
                phase=phase, sequence=sequence, task_path=task_path, config=self.config,
            )
            store = self._manager().store
            cache = FileTimeCache()
            record = resolve_task_progress(store, self.festival_path, canonical, cache=cache)

            if record is not None:
                task = record.to_dict()
                task["display_status"] = record.display_status
                progress = record.progress
            else:
                status = resolve_task_status(store, self.festival_path, canonical)
                progress = 100 if status == STATUS_COMPLETED else 0
                task = {
                    "task_id": canonical,
                    "status": status,
                    "progress": progress,
                    "display_status": status,
                }
            task["time_spent_minutes"] = resolve_task_time(store, self.festival_path, canonical, cache=cache)
            display_status = task["display_status"]

            return {
                "success": True,
                "task": task,
                "tracked": record is not None,
                "icon": STATUS_ICONS.get(display_status, EMOJI_NOT_STARTED),
                "bar": render_progress_bar(progress, no_color=self.config.no_color),
                "message": f"{canonical}: {display_status}",
            }
        except Exception as e:
            return self._error(
                "task_progress", e,
                "Pass a full task path, or a phase and sequence with the task name",
                task_id=task_id, task_path=task_path,
            )

    @log_performance("update_task")
    def update_task(
        self,
        task_id: Optional[str] = None,
        *,
        phase: Optional[str] = None,
        sequence: Optional[str] = None,
        task_path: Optional[str] = None,
        complete: bool = False,
        in_progress: bool = False,
        progress: Optional[Union[str, int]] = None,
        blocker: Optional[str] = None,
        clear_blocker: bool = False,
    ) -> Dict[str, Any]:
        """Apply exactly one update (complete, in_progress, progress, blocker, clear) to a task."""
        try:
            actions = [
                name for name, chosen in (
                    ("complete", complete),
                    ("in_progress", in_progress),
                    ("progress", progress is not None),
                    ("blocker", blocker is not None),
                    ("clear_blocker", clear_blocker),
                ) if chosen
            ]
            if len(actions) != 1:
                raise ValidationError(
                    "exactly one of complete, in_progress, progress, blocker or clear_blocker is required"
                ).with_field("actions", actions)

            canonical = resolve_task_reference(
                self.festival_path, task_id,
                phase=phase, sequence=sequence, task_path=task_path, config=self.config,
            )
            manager = self._manager()
            action = actions[0]

            if action == "complete":
                record = manager.mark_complete(canonical)
            elif action == "in_progress":
                record = manager.mark_in_progress(canonical)
            elif action == "progress":
                record = manager.update_progress(canonical, parse_percentage(progress))
            elif action == "blocker":
                record = manager.report_blocker(canonical, blocker)
            else:
                record = manager.clear_blocker(canonical)

            task = record.to_dict()
            task["display_status"] = record.display_status
            return {
                "success": True,
                "action": action,
                "task": task,
                "festival_completed": manager.store.is_festival_complete(),
                "message": f"{canonical}: {record.display_status} ({record.progress}%)",
            }
        except Exception as e:
            return self._error(
                "update_task", e,
                "Check the task reference and the requested update",
                task_id=task_id, task_path=task_path,
            )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def festival_progress(self) -> Dict[str, Any]:
        """Festival-wide snapshot with per-phase breakdowns."""
        try:
            snapshot = self._aggregator().get_festival_progress()
            data = snapshot.to_dict()
            data["overall"] = self._snapshot_payload(snapshot.overall)
            data["success"] = True
            data["message"] = (
                f"{snapshot.festival_name}: {snapshot.overall.completed}/{snapshot.overall.total} "
                f"tasks complete ({snapshot.overall.percentage}%)"
            )
            return data
        except Exception as e:
            return self._error("festival_progress", e, "Check that the festival root exists")

    def phase_progress(self, phase: str) -> Dict[str, Any]:
        """Snapshot for one phase directory."""
        try:
            snapshot = self._aggregator().get_phase_progress(self._scope_path(phase))
            data = snapshot.to_dict()
            data["progress"] = self._snapshot_payload(snapshot.progress)
            data["success"] = True
            data["message"] = (
                f"{snapshot.phase_id}: {snapshot.progress.completed}/{snapshot.progress.total} "
                f"tasks complete ({snapshot.progress.percentage}%)"
            )
            return data
        except Exception as e:
            return self._error("phase_progress", e, "Pass a phase directory name such as 001_PLANNING", phase=phase)

    def sequence_progress(self, phase: str, sequence: str) -> Dict[str, Any]:
        """Snapshot for one sequence directory."""
        try:
            snapshot = self._aggregator().get_sequence_progress(self._scope_path(phase, sequence))
            data = snapshot.to_dict()
            data["progress"] = self._snapshot_payload(snapshot.progress)
            data["success"] = True
            data["message"] = (
                f"{snapshot.sequence_id}: {snapshot.progress.completed}/{snapshot.progress.total} "
                f"tasks complete ({snapshot.progress.percentage}%)"
            )
            return data
        except Exception as e:
            return self._error(
                "sequence_progress", e,
                "Pass a phase and a sequence directory name such as 01_setup",
                phase=phase, sequence=sequence,
            )

    def render_overview(self) -> str:
        """Human-readable festival overview."""
        snapshot = self._aggregator().get_festival_progress()
        return format_festival_overview(snapshot, self.config)

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    def classify_file(self, filename: str) -> Dict[str, Any]:
        """Classification of a filename or path."""
        info = classify_path(filename)
        data = info.to_dict()
        data["rule"] = matching_rule(info.name) or "default_task"
        data["success"] = True
        data["message"] = f"{info.name or '<empty>'}: {info.type.value}"
        return data

    def migrate_times(self, path: Optional[str] = None, dry_run: bool = False) -> Dict[str, Any]:
        """Back-fill task times for every festival beneath ``path`` (default: this festival)."""
        try:
            root = Path(path).expanduser() if path else self.festival_path
            results = migrate_times(root, dry_run=dry_run, config=self.config, cancel=self.cancel)
            summary = summarize_results(results)
            return {
                "success": True,
                "dry_run": dry_run,
                "results": [result.to_dict() for result in results],
                "summary": summary,
                "message": (
                    f"Migrated: {summary['migrated']}, Skipped: {summary['skipped']}, "
                    f"Errors: {summary['error']}"
                    if results else f"No festivals found in {root}"
                ),
            }
        except Exception as e:
            return self._error("migrate_times", e, "Pass a directory containing fest.yaml festivals", path=path)


def format_festival_overview(snapshot: FestivalProgress, config: Optional[ProgressConfig] = None) -> str:
    """Render a festival snapshot as text; sequences are listed only when verbose."""
    config = config or ProgressConfig()
    overall = snapshot.overall
    lines: List[str] = [
        f"Festival: {snapshot.festival_name}",
        f"{render_progress_bar(overall.percentage, no_color=config.no_color)} "
        f"({overall.completed}/{overall.total} tasks)",
        f"In progress: {overall.in_progress}  Pending: {overall.pending}  Blocked: {overall.blocked}",
        f"Time spent: {format_minutes(overall.time_spent_minutes)}",
    ]
    if snapshot.time_metrics is not None:
        lines.append(f"Lifecycle: {format_duration_with_status(snapshot.time_metrics)}")

    if snapshot.phases:
        lines.append("")
        lines.append("Phases:")
    for phase in snapshot.phases:
        lines.append(
            f"  {phase.phase_id} "
            f"{render_progress_bar(phase.progress.percentage, width=10, no_color=config.no_color)} "
            f"({phase.progress.completed}/{phase.progress.total})"
        )
        if config.verbose:
            for sequence in phase.sequences:
                lines.append(
                    f"    {sequence.sequence_id} {sequence.progress.percentage}% "
                    f"({sequence.progress.completed}/{sequence.progress.total})"
                )

    if overall.blockers:
        lines.append("")
        lines.append("Blockers:")
        for blocker in overall.blockers:
            lines.append(f"  {EMOJI_BLOCKED} {blocker.task_id}: {blocker.blocker_message}")

    return "\n".join(lines)
