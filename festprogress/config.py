"""Configuration for festival progress tracking."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Optional

DEFAULT_PROGRESS_DIR = ".fest"
DEFAULT_PROGRESS_FILE = "progress.yaml"
DEFAULT_SKIP_DIRS = frozenset({".fest", "results"})

PROJECT_ROOT_ENV = "FEST_PROJECT_ROOT"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass(slots=True, frozen=True)
class ProgressConfig:
    """Settings threaded through the store, manager, aggregator and workflow."""

    progress_dir: str = DEFAULT_PROGRESS_DIR
    progress_file: str = DEFAULT_PROGRESS_FILE
    skip_dirs: FrozenSet[str] = field(default_factory=lambda: DEFAULT_SKIP_DIRS)
    max_workers: int = 1
    verbose: bool = False
    no_color: bool = False
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "ProgressConfig":
        """Build a config from FEST_* environment variables."""
        log_file = os.getenv("FEST_LOG_FILE")
        return cls(
            progress_dir=os.getenv("FEST_PROGRESS_DIR", DEFAULT_PROGRESS_DIR),
            progress_file=os.getenv("FEST_PROGRESS_FILE", DEFAULT_PROGRESS_FILE),
            max_workers=max(1, _env_int("FEST_MAX_WORKERS", 1)),
            verbose=_env_bool("FEST_VERBOSE", False),
            no_color=_env_bool("FEST_NO_COLOR", False),
            log_level=os.getenv("FEST_LOG_LEVEL", "INFO").upper(),
            log_file=Path(log_file) if log_file else None,
        )

    def should_skip_dir(self, name: str) -> bool:
        """Return True for internal directories the tree walk must prune."""
        return name in self.skip_dirs or name == self.progress_dir or name.startswith(".")
