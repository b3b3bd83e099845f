"""Back-fill time tracking data for existing festivals.

Festivals created before time tracking existed have completed tasks with
no time data at all. The migration walks a directory tree for festivals
(directories holding ``fest.yaml``) and stamps those records with their
task file modification times. Records with any time field are left alone.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import ProgressConfig
from .errors import CancelledError, FestError, NotFoundError, check_cancelled
from .festival_logging import log_operation, observability_hooks
from .store import ProgressStore

logger = logging.getLogger("festprogress.migrate")

FESTIVAL_MARKER = "fest.yaml"

MIGRATION_MIGRATED = "migrated"
MIGRATION_SKIPPED = "skipped"
MIGRATION_ERROR = "error"


@dataclass(slots=True)
class MigrationResult:
    """Outcome of migrating one festival."""

    path: Path
    status: str
    task_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "path": str(self.path),
            "festival": self.path.name,
            "status": self.status,
            "task_count": self.task_count,
        }
        if self.error:
            data["error"] = self.error
        return data


def find_festivals(root: Path | str, config: Optional[ProgressConfig] = None) -> List[Path]:
    """Directories beneath ``root`` that contain a ``fest.yaml``, sorted."""
    config = config or ProgressConfig()
    root = Path(root)
    if not root.is_dir():
        raise NotFoundError("directory not found", op="find_festivals", fields={"path": str(root)})

    festivals: List[Path] = []
    # unreadable subdirectories are skipped
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [name for name in dirnames if name != config.progress_dir]
        if FESTIVAL_MARKER in filenames:
            festivals.append(Path(dirpath))
    return sorted(festivals)


def migrate_festival_times(
    festival_path: Path | str,
    *,
    dry_run: bool = False,
    config: Optional[ProgressConfig] = None,
    cancel: Optional[threading.Event] = None,
) -> MigrationResult:
    """Stamp bare completed records of one festival with file times.

    Festivals that already report work minutes are skipped. With
    ``dry_run`` the inference runs but nothing is written.
    """
    festival_path = Path(festival_path)
    store = ProgressStore(festival_path, config)

    try:
        store.load(cancel)
    except CancelledError:
        raise
    except FestError as e:
        logger.warning(f"Cannot load progress for {festival_path}: {e}")
        return MigrationResult(path=festival_path, status=MIGRATION_ERROR, error=str(e))

    metrics = store.get_time_metrics()
    if metrics is not None and metrics.total_work_minutes > 0:
        return MigrationResult(path=festival_path, status=MIGRATION_SKIPPED)

    updated = store.lazy_populate_time_data()
    if updated == 0:
        return MigrationResult(path=festival_path, status=MIGRATION_SKIPPED)

    if not dry_run:
        try:
            store.save(cancel)
        except CancelledError:
            raise
        except FestError as e:
            logger.warning(f"Cannot save progress for {festival_path}: {e}")
            return MigrationResult(path=festival_path, status=MIGRATION_ERROR, error=str(e))

    return MigrationResult(path=festival_path, status=MIGRATION_MIGRATED, task_count=updated)


def migrate_times(
    root: Path | str,
    *,
    dry_run: bool = False,
    config: Optional[ProgressConfig] = None,
    cancel: Optional[threading.Event] = None,
) -> List[MigrationResult]:
    """Run the time migration for every festival beneath ``root``."""
    check_cancelled(cancel, "migrate_times")
    root = Path(root).resolve()

    with log_operation("migrate_times", root=str(root), dry_run=dry_run):
        festivals = find_festivals(root, config)

        results = [
            migrate_festival_times(path, dry_run=dry_run, config=config, cancel=cancel)
            for path in festivals
        ]

    summary = summarize_results(results)
    observability_hooks.log_progress_event(
        "times_migrated",
        festival=None,
        root=str(root),
        dry_run=dry_run,
        **summary,
    )
    return results


def summarize_results(results: List[MigrationResult]) -> Dict[str, int]:
    """Count results per status."""
    summary = {MIGRATION_MIGRATED: 0, MIGRATION_SKIPPED: 0, MIGRATION_ERROR: 0}
    for result in results:
        summary[result.status] = summary.get(result.status, 0) + 1
    return summary
