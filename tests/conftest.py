# tests/conftest.py

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path

import pytest

FULLY_CHECKED = """# Design

## Definition of Done
- [x] Schema drafted
- [X] Schema reviewed
"""

HALF_CHECKED = """# Research

- [x] Read prior art
- [ ] Summarize findings
"""

UNCHECKED_GATE = """# Testing

- [ ] Run the suite
"""


def write_file(root: Path, rel: str, content: str = "") -> Path:
    """Create ``root/rel`` with its parent directories."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def set_mtime(path: Path, when: datetime) -> None:
    """Set both atime and mtime of a file to ``when``."""
    stamp = when.timestamp()
    os.utime(path, (stamp, stamp))


@pytest.fixture()
def festival(tmp_path: Path) -> Path:
    """
    A small festival tree:

    001_PLANNING/01_setup    01_design.md (done), 02_research.md (half done),
                             03_testing_and_verify.md (gate, open)
    001_PLANNING/02_review   01_design.md (no checkboxes)
    002_BUILD/01_core        01_impl.md, 02_commit.md (gate), notes.md (untracked)

    Six tracked files; goal documents and notes are not counted.
    """
    root = tmp_path / "demo-fest"
    write_file(root, "fest.yaml", "name: demo-fest\n")
    write_file(root, "FESTIVAL_OVERVIEW.md", "- [ ] not a task\n")
    write_file(root, "001_PLANNING/PHASE_GOAL.md", "- [x] goal\n")
    write_file(root, "001_PLANNING/01_setup/SEQUENCE_GOAL.md", "- [x] goal\n")
    write_file(root, "001_PLANNING/01_setup/01_design.md", FULLY_CHECKED)
    write_file(root, "001_PLANNING/01_setup/02_research.md", HALF_CHECKED)
    write_file(root, "001_PLANNING/01_setup/03_testing_and_verify.md", UNCHECKED_GATE)
    write_file(root, "001_PLANNING/02_review/01_design.md", "# Design review\n")
    write_file(root, "002_BUILD/01_core/01_impl.md", "Implement the core.\n")
    write_file(root, "002_BUILD/01_core/02_commit.md", "Commit the work.\n")
    write_file(root, "002_BUILD/01_core/notes.md", "- [x] scratch\n")
    write_file(root, "002_BUILD/01_core/results/01_output.md", "- [x] ignored\n")
    return root


@pytest.fixture()
def make_file():
    """The ``write_file`` helper, for tests that build their own trees."""
    return write_file


@pytest.fixture()
def file_mtime():
    """The ``set_mtime`` helper."""
    return set_mtime
