"""Task ID normalization and status/time resolution for single tasks.

Stored progress always wins over inference. When the store has nothing
to say, status falls back to the task file's checkboxes and time falls
back to zero. The read paths here never raise for missing or unreadable
task files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from .classifier import should_track
from .config import ProgressConfig
from .errors import FestError, FestIOError, NotFoundError, ValidationError
from .filetime import FileTimeCache, get_file_mod_time
from .markdown import parse_task_status
from .models import STATUS_COMPLETED, TaskProgress, minutes_between
from .store import ProgressStore, legacy_key

logger = logging.getLogger("festprogress.resolve")

MIN_TASK_PATH_PARTS = 3  # phase/sequence/file


def _has_separator(value: str) -> bool:
    return "/" in value or "\\" in value


def task_key_from_path(festival_path: str | os.PathLike, task_path: str | os.PathLike) -> str:
    """Festival-relative, forward-slash key for a path beneath the festival."""
    try:
        rel = os.path.relpath(os.path.abspath(task_path), os.path.abspath(festival_path))
    except ValueError as e:
        # different drives on Windows
        raise FestIOError("resolving task path", cause=e, fields={
            "festival_path": str(festival_path),
            "task_path": str(task_path),
        }) from e

    if rel in (".", "..") or rel.startswith(".." + os.sep):
        raise ValidationError("task path is outside festival", fields={
            "festival_path": str(festival_path),
            "task_path": str(task_path),
        })
    return Path(rel).as_posix()


def normalize_task_id(festival_path: str | os.PathLike, task_id: str) -> str:
    """Canonicalize a task reference into a store key.

    Absolute paths are made festival-relative, relative paths are cleaned,
    bare filenames come back unchanged.
    """
    if not task_id:
        raise ValidationError("task ID required", op="normalize_task_id")

    if os.path.isabs(task_id):
        return task_key_from_path(festival_path, task_id)

    if _has_separator(task_id):
        joined = os.path.join(os.fspath(festival_path), task_id.replace("\\", "/"))
        return task_key_from_path(festival_path, os.path.normpath(joined))

    return task_id


def ensure_markdown_filename(name: str) -> str:
    return name if name.endswith(".md") else f"{name}.md"


def find_task_matches(
    festival_path: str | os.PathLike,
    task_name: str,
    config: Optional[ProgressConfig] = None,
) -> List[str]:
    """Canonical IDs of tracked files whose filename equals ``task_name``.

    The name matches with or without its ``.md`` suffix. Internal
    directories are pruned and only files at least phase/sequence deep
    are considered. The result is sorted.
    """
    config = config or ProgressConfig()
    root = os.fspath(festival_path)
    if not root:
        raise ValidationError("festival path required", op="find_task_matches")
    if not os.path.isdir(root):
        raise NotFoundError("festival not found", op="find_task_matches", fields={"path": root})

    candidates = {task_name, ensure_markdown_filename(task_name)}
    matches: List[str] = []

    def _raise_walk_error(error: OSError) -> None:
        raise FestIOError("walking festival", cause=error, fields={"path": root}) from error

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
        dirnames[:] = [name for name in dirnames if not config.should_skip_dir(name)]
        for name in filenames:
            if name not in candidates or not should_track(name):
                continue
            rel = Path(os.path.relpath(os.path.join(dirpath, name), root))
            if len(rel.parts) < MIN_TASK_PATH_PARTS:
                continue
            matches.append(rel.as_posix())

    matches.sort()
    return matches


def resolve_task_reference(
    festival_path: str | os.PathLike,
    task_id: Optional[str] = None,
    *,
    phase: Optional[str] = None,
    sequence: Optional[str] = None,
    task_path: Optional[str] = None,
    config: Optional[ProgressConfig] = None,
) -> str:
    """Turn a caller's task reference into a canonical task ID.

    ``task_path`` is used as given. A bare ``task_id`` is searched for in
    the festival tree: one match is used, several raise a ValidationError
    listing every candidate, none falls through to the bare name.
    ``phase`` and ``sequence`` qualify a bare name explicitly.
    """
    if task_path:
        if task_id or phase or sequence:
            raise ValidationError("use a task path or task/phase/sequence, not both")
        return normalize_task_id(festival_path, task_path)

    if (phase or sequence) and not task_id:
        raise ValidationError("phase/sequence require a task")
    if bool(phase) != bool(sequence):
        raise ValidationError("both phase and sequence must be provided together")

    task_id = (task_id or "").strip()
    if not task_id:
        raise ValidationError("task ID required", op="resolve_task_reference")

    if phase and sequence:
        joined = "/".join((phase, sequence, ensure_markdown_filename(task_id)))
        return normalize_task_id(festival_path, joined)

    normalized = normalize_task_id(festival_path, task_id)

    if not _has_separator(task_id) and not os.path.isabs(task_id):
        matches = find_task_matches(festival_path, task_id, config)
        if len(matches) > 1:
            raise ValidationError(
                "task ID is ambiguous; provide a full task path or a phase and sequence: "
                + ", ".join(matches),
                op="resolve_task_reference",
            ).with_field("task", task_id).with_field("matches", matches)
        if len(matches) == 1:
            logger.debug(f"Resolved bare task '{task_id}' to {matches[0]}")
            return matches[0]

    return normalized


def _absolute_task_path(festival_path: str | os.PathLike, task_path: str | os.PathLike) -> str:
    task_path = os.fspath(task_path)
    if os.path.isabs(task_path):
        return task_path
    return os.path.join(os.fspath(festival_path), task_path)


def lookup_task_progress(
    store: Optional[ProgressStore],
    festival_path: str | os.PathLike,
    task_path: str | os.PathLike,
) -> Optional[TaskProgress]:
    """Stored record for a task file: canonical key first, then the legacy filename key."""
    if store is None or not os.fspath(task_path):
        return None

    abs_path = _absolute_task_path(festival_path, task_path)
    try:
        key = task_key_from_path(festival_path, abs_path)
    except FestError:
        return store.get_task(legacy_key(os.fspath(task_path)))

    task, found = store.get_task_progress(key)
    return task if found else None


def resolve_task_time(
    store: Optional[ProgressStore],
    festival_path: str | os.PathLike,
    task_path: str | os.PathLike,
    cache: Optional[FileTimeCache] = None,
) -> int:
    """Minutes spent on a task: explicit minutes, else the start/completion span, else 0."""
    task = lookup_task_progress(store, festival_path, task_path)
    return _time_for_record(task, _absolute_task_path(festival_path, task_path), cache)


def _time_for_record(task: Optional[TaskProgress], abs_path: str, cache: Optional[FileTimeCache]) -> int:
    if task is None:
        return 0
    if task.time_spent_minutes > 0:
        return task.time_spent_minutes
    if task.started_at is None:
        return 0
    if task.completed_at is None and task.status != STATUS_COMPLETED:
        return 0

    end = task.completed_at
    if end is None:
        end = cache.get_mod_time(abs_path) if cache is not None else get_file_mod_time(abs_path)
        if end is None:
            return 0
    return minutes_between(task.started_at, end)


def resolve_task_status(
    store: Optional[ProgressStore],
    festival_path: str | os.PathLike,
    task_path: str | os.PathLike,
) -> str:
    """Stored status verbatim when set, else the status read from the file's checkboxes."""
    task = lookup_task_progress(store, festival_path, task_path)
    if task is not None and task.status:
        return task.status
    return parse_task_status(_absolute_task_path(festival_path, task_path))


def resolve_task_progress(
    store: Optional[ProgressStore],
    festival_path: str | os.PathLike,
    task_path: str | os.PathLike,
    cache: Optional[FileTimeCache] = None,
) -> Optional[TaskProgress]:
    """Resolved view of a task's record; None when nothing is stored.

    The returned record is a copy: status is resolved, a completed
    record with no completion stamp gets the file's modification time,
    and minutes come from :func:`resolve_task_time`. The store is not
    modified.
    """
    task = lookup_task_progress(store, festival_path, task_path)
    if task is None:
        return None

    abs_path = _absolute_task_path(festival_path, task_path)
    resolved = task.copy()
    if not resolved.status:
        resolved.status = parse_task_status(abs_path)
    if resolved.completed_at is None and resolved.status == STATUS_COMPLETED:
        resolved.completed_at = cache.get_mod_time(abs_path) if cache is not None else get_file_mod_time(abs_path)
    resolved.time_spent_minutes = _time_for_record(resolved, abs_path, cache)
    return resolved
