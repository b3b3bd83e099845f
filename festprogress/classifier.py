"""File classification for festival progress tracking.

This module is the single place that decides what counts as a task, a
gate, a goal document or an unrelated file. Classification is an ordered
table of ``(name, predicate, FileType)`` rules; the first rule whose
predicate matches wins. Every caller that needs to know whether a file
counts toward progress goes through :func:`should_track`.
"""

from __future__ import annotations

import os
import re
from typing import Callable, NamedTuple, Optional, Tuple

from .models import FileInfo, FileType

# NN_name.md or NN.N_name.md, e.g. 01_design.md, 01.5_hotfix.md
TASK_PATTERN = re.compile(r"\d{2}[._].*\.md", re.ASCII)
# NNN_Name, e.g. 001_PLANNING
PHASE_PATTERN = re.compile(r"\d{3}_", re.ASCII)
# NN_name, e.g. 01_setup (a phase name never matches: the third char is a digit)
SEQUENCE_PATTERN = re.compile(r"\d{2}_", re.ASCII)

GOAL_FILES = frozenset({
    "SEQUENCE_GOAL.md",
    "PHASE_GOAL.md",
    "FESTIVAL_GOAL.md",
    "FESTIVAL_OVERVIEW.md",
    "TODO.md",
    "CONTEXT.md",
    "FESTIVAL_RULES.md",
})

# Matched against the lower-cased name part, e.g. "testing_and_verify"
GATE_EXACT_MATCHES = frozenset({"commit"})
GATE_SUBSTRINGS = (
    "gate",
    "testing_and_verify",
    "code_review",
    "review_results_iterate",
)


def extract_name_part(filename: str) -> str:
    """Strip the numeric prefix and ``.md`` suffix from a task filename.

    "04_testing_and_verify.md" -> "testing_and_verify"
    "01.5_hotfix.md" -> "hotfix"
    """
    name = filename[:-3] if filename.endswith(".md") else filename
    _, sep, rest = name.partition("_")
    if sep:
        return rest
    return name


def _is_goal_file(filename: str) -> bool:
    return filename in GOAL_FILES


def _is_not_task_shaped(filename: str) -> bool:
    return TASK_PATTERN.fullmatch(filename) is None


def _is_exact_gate(filename: str) -> bool:
    return extract_name_part(filename).lower() in GATE_EXACT_MATCHES


def _contains_gate_marker(filename: str) -> bool:
    lower = extract_name_part(filename).lower()
    return any(marker in lower for marker in GATE_SUBSTRINGS)


class ClassificationRule(NamedTuple):
    name: str
    predicate: Callable[[str], bool]
    file_type: FileType


CLASSIFICATION_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule("goal_document", _is_goal_file, FileType.GOAL),
    ClassificationRule("not_task_shaped", _is_not_task_shaped, FileType.UNKNOWN),
    ClassificationRule("gate_exact", _is_exact_gate, FileType.GATE),
    ClassificationRule("gate_substring", _contains_gate_marker, FileType.GATE),
)


def classify_file(filename: str) -> FileType:
    """Return the FileType for a bare filename. Total and side-effect free."""
    for rule in CLASSIFICATION_RULES:
        if rule.predicate(filename):
            return rule.file_type
    return FileType.TASK


def matching_rule(filename: str) -> Optional[str]:
    """Name of the rule that decided the classification, None for the task default."""
    for rule in CLASSIFICATION_RULES:
        if rule.predicate(filename):
            return rule.name
    return None


def classify_path(path: str | os.PathLike) -> FileInfo:
    """Classify a file from its full path."""
    path_str = os.fspath(path)
    name = os.path.basename(path_str.replace("\\", "/").rstrip("/")) if path_str else ""
    return FileInfo(name=name, path=path_str, type=classify_file(name))


def should_track(filename: str) -> bool:
    """True for tasks and gates; the only predicate used for progress totals."""
    return classify_file(filename) in (FileType.TASK, FileType.GATE)


def is_task(filename: str) -> bool:
    return classify_file(filename) is FileType.TASK


def is_gate(filename: str) -> bool:
    return classify_file(filename) is FileType.GATE


def is_goal(filename: str) -> bool:
    return classify_file(filename) is FileType.GOAL


def is_phase_dir(name: str) -> bool:
    """True for directories named like ``001_PLANNING``."""
    return PHASE_PATTERN.match(name) is not None


def is_sequence_dir(name: str) -> bool:
    """True for directories named like ``01_setup``."""
    return SEQUENCE_PATTERN.match(name) is not None
