"""Hierarchical progress snapshots for festivals, phases and sequences.

The aggregator walks ``NNN_phase/NN_sequence/NN_task.md`` directories,
resolves every tracked file's status and time, and rolls the counts up.
Tracked files placed directly under a phase or the festival root are
counted in that scope too. Snapshots are derived on demand and never
persisted.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from .classifier import is_phase_dir, is_sequence_dir, should_track
from .config import ProgressConfig
from .errors import FestIOError, NotFoundError, check_cancelled
from .festival_logging import log_performance
from .filetime import FileTimeCache
from .models import (
    STATUS_BLOCKED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    AggregateProgress,
    BlockerEntry,
    FestivalProgress,
    PhaseProgress,
    SequenceProgress,
)
from .resolve import lookup_task_progress, resolve_task_status, resolve_task_time
from .store import ProgressStore

logger = logging.getLogger("festprogress.aggregate")

T = TypeVar("T")
R = TypeVar("R")


class ProgressAggregator:
    """Computes read-only progress snapshots from the store and the file tree."""

    def __init__(
        self,
        store: ProgressStore,
        festival_path: Optional[Path | str] = None,
        config: Optional[ProgressConfig] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.store = store
        self.festival_path = Path(festival_path) if festival_path is not None else store.festival_path
        self.config = config or store.config
        self.cancel = cancel
        self._time_cache = FileTimeCache()

    # ------------------------------------------------------------------
    # Walking
    # ------------------------------------------------------------------

    def _scan_dir(self, path: Path) -> Tuple[List[str], List[str]]:
        """Sorted ``(subdirectories, tracked files)`` directly inside ``path``."""
        if not path.is_dir():
            raise NotFoundError("directory not found", fields={"path": str(path)})
        dirs: List[str] = []
        files: List[str] = []
        try:
            with os.scandir(path) as entries:
                for entry in entries:
                    if entry.is_dir():
                        if not self.config.should_skip_dir(entry.name):
                            dirs.append(entry.name)
                    elif should_track(entry.name):
                        files.append(entry.name)
        except OSError as e:
            raise FestIOError("reading directory", cause=e, fields={"path": str(path)}) from e
        return sorted(dirs), sorted(files)

    def _map(self, func: Callable[[T], R], items: Iterable[T]) -> List[R]:
        """Apply ``func`` to each item, in parallel when configured; results keep input order."""
        items = list(items)
        if self.config.max_workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                return list(pool.map(func, items))
        return [func(item) for item in items]

    def _count_files(self, directory: Path, filenames: Iterable[str]) -> AggregateProgress:
        aggregate = AggregateProgress()
        for name in filenames:
            task_path = directory / name
            aggregate.total += 1

            status = resolve_task_status(self.store, self.festival_path, task_path)
            if status == STATUS_COMPLETED:
                aggregate.completed += 1
            elif status in (STATUS_IN_PROGRESS, STATUS_BLOCKED):
                aggregate.in_progress += 1
            else:
                aggregate.pending += 1

            record = lookup_task_progress(self.store, self.festival_path, task_path)
            if record is not None:
                if record.is_blocked:
                    aggregate.blocked += 1
                if record.blocker_message:
                    aggregate.blockers.append(BlockerEntry(
                        task_id=record.task_id,
                        blocker_message=record.blocker_message,
                    ))

            aggregate.time_spent_minutes += resolve_task_time(
                self.store, self.festival_path, task_path, cache=self._time_cache
            )
        return aggregate

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------

    def get_sequence_progress(self, sequence_path: Path | str) -> SequenceProgress:
        """Snapshot for one sequence directory."""
        check_cancelled(self.cancel, "sequence_progress")
        sequence_path = Path(sequence_path)

        _, files = self._scan_dir(sequence_path)
        aggregate = self._count_files(sequence_path, files).finalize()
        return SequenceProgress(
            sequence_id=sequence_path.name,
            path=sequence_path,
            progress=aggregate,
        )

    def get_phase_progress(self, phase_path: Path | str) -> PhaseProgress:
        """Snapshot for one phase, with a breakdown per sequence."""
        check_cancelled(self.cancel, "phase_progress")
        phase_path = Path(phase_path)

        dirs, files = self._scan_dir(phase_path)
        sequence_paths = [phase_path / name for name in dirs if is_sequence_dir(name)]
        sequences = self._map(self.get_sequence_progress, sequence_paths)

        aggregate = self._count_files(phase_path, files)
        for sequence in sequences:
            aggregate.merge(sequence.progress)
        aggregate.finalize()

        return PhaseProgress(
            phase_id=phase_path.name,
            path=phase_path,
            progress=aggregate,
            sequences=sequences,
        )

    @log_performance("festival_progress")
    def get_festival_progress(self) -> FestivalProgress:
        """Festival-wide snapshot with per-phase breakdowns."""
        check_cancelled(self.cancel, "festival_progress")
        root = self.festival_path

        dirs, files = self._scan_dir(root)
        phase_paths = [root / name for name in dirs if is_phase_dir(name)]
        phases = self._map(self.get_phase_progress, phase_paths)

        overall = self._count_files(root, files)
        for phase in phases:
            overall.merge(phase.progress)
        overall.finalize()

        logger.debug(
            f"Festival '{root.name}': {overall.completed}/{overall.total} complete "
            f"across {len(phases)} phases"
        )
        return FestivalProgress(
            festival_name=root.name,
            overall=overall,
            phases=phases,
            time_metrics=self.store.get_time_metrics(),
        )
