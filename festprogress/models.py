"""Data models for festival progress tracking.

This module contains the core data structures used throughout the engine:
per-task progress records, the persisted festival document, file
classification results and the aggregated progress snapshots.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_BLOCKED = "blocked"
STATUS_COMPLETED = "completed"

VALID_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_BLOCKED, STATUS_COMPLETED)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO-8601, keeping None as None."""
    if value is None:
        return None
    return value.isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO string or datetime into an aware UTC datetime.

    Naive values are assumed to be UTC. Raises ValueError for anything
    that is not a timestamp.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, half-minutes rounding up, floored at zero."""
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds / 60 + 0.5)


@dataclass(slots=True)
class TaskProgress:
    """Progress record for a single trackable file, keyed by canonical task ID."""

    task_id: str
    status: str = ""
    progress: int = 0
    blocker_message: str = ""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent_minutes: int = 0
    blocked_at: Optional[datetime] = None

    @property
    def is_blocked(self) -> bool:
        """True when a blocker is recorded or a legacy blocked status is stored."""
        return bool(self.blocker_message) or self.status == STATUS_BLOCKED

    @property
    def display_status(self) -> str:
        """Status shown to users: a recorded blocker always displays as blocked."""
        if self.blocker_message:
            return STATUS_BLOCKED
        return self.status or STATUS_PENDING

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted dictionary representation."""
        data: Dict[str, Any] = {
            "task_id": self.task_id,
            "status": self.status,
            "progress": self.progress,
        }
        if self.blocker_message:
            data["blocker_message"] = self.blocker_message
        if self.started_at is not None:
            data["started_at"] = to_iso(self.started_at)
        if self.completed_at is not None:
            data["completed_at"] = to_iso(self.completed_at)
        if self.time_spent_minutes:
            data["time_spent_minutes"] = self.time_spent_minutes
        if self.blocked_at is not None:
            data["blocked_at"] = to_iso(self.blocked_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], task_id: Optional[str] = None) -> "TaskProgress":
        """Create from dictionary representation.

        ``task_id`` is the mapping key in the persisted document; it wins over
        an embedded ``task_id`` field. Raises ValueError or TypeError on
        malformed values.
        """
        if not isinstance(data, dict):
            raise TypeError(f"task record must be a mapping, got {type(data).__name__}")
        key = task_id or data.get("task_id")
        if not key:
            raise ValueError("task record has no task_id")
        return cls(
            task_id=str(key),
            status=str(data.get("status") or ""),
            progress=int(data.get("progress") or 0),
            blocker_message=str(data.get("blocker_message") or ""),
            started_at=parse_timestamp(data.get("started_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
            time_spent_minutes=int(data.get("time_spent_minutes") or 0),
            blocked_at=parse_timestamp(data.get("blocked_at")),
        )

    def copy(self) -> "TaskProgress":
        """Return a detached copy of this record."""
        return TaskProgress(
            task_id=self.task_id,
            status=self.status,
            progress=self.progress,
            blocker_message=self.blocker_message,
            started_at=self.started_at,
            completed_at=self.completed_at,
            time_spent_minutes=self.time_spent_minutes,
            blocked_at=self.blocked_at,
        )


@dataclass(slots=True)
class FestivalTimeMetrics:
    """Festival-level time data: agent work minutes and overall lifecycle."""

    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    lifecycle_duration_days: int = 0
    total_work_minutes: int = 0

    def calculate_lifecycle_duration(self) -> int:
        """Days from creation to completion, or -1 while the festival is ongoing."""
        if self.completed_at is None:
            return -1
        return int((self.completed_at - self.created_at).total_seconds() // 86400)

    def get_lifecycle_duration(self) -> int:
        """Return the lifecycle duration, recalculating it for completed festivals."""
        if self.completed_at is not None:
            self.lifecycle_duration_days = self.calculate_lifecycle_duration()
        return self.lifecycle_duration_days

    def get_current_duration(self, now: Optional[datetime] = None) -> int:
        """Days elapsed since the festival was created."""
        now = now or utcnow()
        return int((now - self.created_at).total_seconds() // 86400)

    def copy(self) -> "FestivalTimeMetrics":
        return FestivalTimeMetrics(
            created_at=self.created_at,
            completed_at=self.completed_at,
            lifecycle_duration_days=self.lifecycle_duration_days,
            total_work_minutes=self.total_work_minutes,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "created_at": to_iso(self.created_at),
            "total_work_minutes": self.total_work_minutes,
        }
        if self.completed_at is not None:
            data["completed_at"] = to_iso(self.completed_at)
        if self.lifecycle_duration_days:
            data["lifecycle_duration_days"] = self.lifecycle_duration_days
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FestivalTimeMetrics":
        """Create from dictionary representation."""
        if not isinstance(data, dict):
            raise TypeError("time_metrics must be a mapping")
        return cls(
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            completed_at=parse_timestamp(data.get("completed_at")),
            lifecycle_duration_days=int(data.get("lifecycle_duration_days") or 0),
            total_work_minutes=int(data.get("total_work_minutes") or 0),
        )


def format_lifecycle_duration(days: int) -> str:
    """Render a lifecycle duration in days for display."""
    if days < 0:
        return "ongoing"
    if days == 0:
        return "< 1 day"
    if days == 1:
        return "1 day"
    return f"{days} days"


def format_duration_with_status(metrics: Optional[FestivalTimeMetrics], now: Optional[datetime] = None) -> str:
    """Render lifecycle duration, marking festivals that are still running."""
    if metrics is None:
        return "unknown"
    if metrics.completed_at is not None:
        return format_lifecycle_duration(metrics.get_lifecycle_duration())
    days = metrics.get_current_duration(now)
    if days == 0:
        return "< 1 day (ongoing)"
    if days == 1:
        return "1 day (ongoing)"
    return f"{days} days (ongoing)"


@dataclass(slots=True)
class FestivalProgressData:
    """The persisted progress document for one festival."""

    festival: str
    updated_at: datetime = field(default_factory=utcnow)
    time_metrics: Optional[FestivalTimeMetrics] = None
    tasks: Dict[str, TaskProgress] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation, tasks sorted by ID."""
        data: Dict[str, Any] = {
            "festival": self.festival,
            "updated_at": to_iso(self.updated_at),
        }
        if self.time_metrics is not None:
            data["time_metrics"] = self.time_metrics.to_dict()
        data["tasks"] = {
            task_id: self.tasks[task_id].to_dict() for task_id in sorted(self.tasks)
        }
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], festival: str) -> "FestivalProgressData":
        """Create from dictionary representation."""
        if not isinstance(data, dict):
            raise TypeError("progress document must be a mapping")
        raw_tasks = data.get("tasks") or {}
        if not isinstance(raw_tasks, dict):
            raise TypeError("tasks must be a mapping of task ID to record")
        updated_at = parse_timestamp(data.get("updated_at")) or utcnow()
        raw_metrics = data.get("time_metrics")
        if raw_metrics is not None:
            metrics = FestivalTimeMetrics.from_dict(raw_metrics)
        else:
            # legacy files: first known timestamp stands in for creation
            metrics = FestivalTimeMetrics(created_at=updated_at)
        return cls(
            festival=str(data.get("festival") or festival),
            updated_at=updated_at,
            time_metrics=metrics,
            tasks={
                str(key): TaskProgress.from_dict(value, task_id=str(key))
                for key, value in raw_tasks.items()
            },
        )


class FileType(str, enum.Enum):
    """Semantic type of a festival file."""

    UNKNOWN = "unknown"
    TASK = "task"
    GATE = "gate"
    GOAL = "goal"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True, frozen=True)
class FileInfo:
    """Classification of a single file."""

    name: str
    path: str
    type: FileType

    @property
    def is_task(self) -> bool:
        return self.type is FileType.TASK

    @property
    def is_gate(self) -> bool:
        return self.type is FileType.GATE

    @property
    def is_goal(self) -> bool:
        return self.type is FileType.GOAL

    @property
    def tracked(self) -> bool:
        return self.type in (FileType.TASK, FileType.GATE)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "path": self.path,
            "type": self.type.value,
            "is_task": self.is_task,
            "is_gate": self.is_gate,
            "is_goal": self.is_goal,
            "tracked": self.tracked,
        }


@dataclass(slots=True)
class CheckboxCounts:
    """Checkbox statistics collected from a markdown document."""

    checked: int = 0
    unchecked: int = 0

    @property
    def total(self) -> int:
        return self.checked + self.unchecked


@dataclass(slots=True, frozen=True)
class BlockerEntry:
    """A recorded blocker surfaced in a snapshot."""

    task_id: str
    blocker_message: str

    def to_dict(self) -> Dict[str, str]:
        return {"task_id": self.task_id, "blocker_message": self.blocker_message}


@dataclass(slots=True)
class AggregateProgress:
    """Read-only progress snapshot for a festival, phase or sequence.

    ``completed + in_progress + pending == total``; ``blocked`` counts
    blocked tasks a second time without moving them out of their bucket.
    """

    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    blocked: int = 0
    percentage: int = 0
    time_spent_minutes: int = 0
    blockers: List[BlockerEntry] = field(default_factory=list)

    def merge(self, other: "AggregateProgress") -> None:
        """Add another snapshot's counters into this one."""
        self.total += other.total
        self.completed += other.completed
        self.in_progress += other.in_progress
        self.pending += other.pending
        self.blocked += other.blocked
        self.time_spent_minutes += other.time_spent_minutes
        self.blockers.extend(other.blockers)

    def finalize(self) -> "AggregateProgress":
        """Recompute the completion percentage and order blockers by task ID."""
        self.percentage = (self.completed * 100) // self.total if self.total > 0 else 0
        self.blockers.sort(key=lambda blocker: blocker.task_id)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total": self.total,
            "completed": self.completed,
            "in_progress": self.in_progress,
            "pending": self.pending,
            "blocked": self.blocked,
            "percentage": self.percentage,
            "time_spent_minutes": self.time_spent_minutes,
            "blockers": [blocker.to_dict() for blocker in self.blockers],
        }


@dataclass(slots=True)
class SequenceProgress:
    """Progress for one sequence directory."""

    sequence_id: str
    path: Path
    progress: AggregateProgress

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_id": self.sequence_id,
            "path": str(self.path),
            "progress": self.progress.to_dict(),
        }


@dataclass(slots=True)
class PhaseProgress:
    """Progress for one phase directory with its sequence breakdown."""

    phase_id: str
    path: Path
    progress: AggregateProgress
    sequences: List[SequenceProgress] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase_id": self.phase_id,
            "path": str(self.path),
            "progress": self.progress.to_dict(),
            "sequences": [sequence.to_dict() for sequence in self.sequences],
        }


@dataclass(slots=True)
class FestivalProgress:
    """Festival-wide snapshot with per-phase breakdowns."""

    festival_name: str
    overall: AggregateProgress
    phases: List[PhaseProgress] = field(default_factory=list)
    time_metrics: Optional[FestivalTimeMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "festival_name": self.festival_name,
            "overall": self.overall.to_dict(),
            "phases": [phase.to_dict() for phase in self.phases],
        }
        if self.time_metrics is not None:
            data["time_metrics"] = self.time_metrics.to_dict()
            data["lifecycle"] = format_duration_with_status(self.time_metrics)
        return data
