"""Checkbox-based status inference for task markdown files.

A task file's status can be read from its checkboxes when no explicit
progress has been recorded. Status sections ("Definition of Done",
"Requirements", ...) are counted together; the whole document is the
fallback. Nothing here raises: unreadable files read as pending.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Iterable, Tuple

from .models import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    CheckboxCounts,
)

logger = logging.getLogger("festprogress.markdown")

CHECKED_BOX_PATTERN = re.compile(r"^\s*[-*]\s*\[[xX]\]")
UNCHECKED_BOX_PATTERN = re.compile(r"^\s*[-*]\s*\[\s*\]")

EMOJI_COMPLETED = "✅"
EMOJI_IN_PROGRESS = "🚧"
EMOJI_BLOCKED = "❌"
EMOJI_NOT_STARTED = "⬜"

# Header substrings that open a status section
STATUS_SECTIONS = (
    "definition of done",
    "requirements",
    "acceptance criteria",
    "deliverables",
    "checklist",
)

MAX_HEADER_LEVEL = 6


def parse_header(line: str) -> Tuple[int, str]:
    """Return ``(level, text)`` for a markdown header, ``(0, "")`` otherwise."""
    trimmed = line.lstrip(" \t")
    if not trimmed.startswith("#"):
        return 0, ""
    level = len(trimmed) - len(trimmed.lstrip("#"))
    if level > MAX_HEADER_LEVEL:
        return 0, ""
    return level, trimmed.lstrip("#").strip()


def is_status_header(header_text: str) -> bool:
    lower = header_text.lower()
    return any(section in lower for section in STATUS_SECTIONS)


def add_checkbox_counts(counts: CheckboxCounts, line: str) -> None:
    """Count at most one checkbox on the line."""
    if CHECKED_BOX_PATTERN.match(line):
        counts.checked += 1
    elif UNCHECKED_BOX_PATTERN.match(line):
        counts.unchecked += 1
    elif f"[{EMOJI_COMPLETED}]" in line:
        counts.checked += 1
    elif any(f"[{emoji}]" in line for emoji in (EMOJI_IN_PROGRESS, EMOJI_BLOCKED, EMOJI_NOT_STARTED)):
        # started or blocked items are still open
        counts.unchecked += 1


def extract_section_checkboxes(lines: Iterable[str]) -> CheckboxCounts:
    """Counts summed over every status section in the document.

    A section runs until the next header of equal or shallower level.
    Deeper headers, status-named or not, stay inside the open section.
    Returns empty counts when no status section holds a checkbox.
    """
    counts = CheckboxCounts()
    section_level = 0

    for line in lines:
        level, text = parse_header(line)
        if level:
            if section_level and level > section_level:
                continue
            section_level = level if is_status_header(text) else 0
            continue
        if section_level:
            add_checkbox_counts(counts, line)

    return counts


def extract_all_checkboxes(lines: Iterable[str]) -> CheckboxCounts:
    counts = CheckboxCounts()
    for line in lines:
        add_checkbox_counts(counts, line)
    return counts


def status_from_counts(counts: CheckboxCounts) -> str:
    if counts.total == 0:
        return STATUS_PENDING
    if counts.checked == counts.total:
        return STATUS_COMPLETED
    if counts.checked > 0:
        return STATUS_IN_PROGRESS
    return STATUS_PENDING


def count_checkboxes(text: str) -> CheckboxCounts:
    """Counts used for status: a status section if it has any, else the document."""
    lines = text.splitlines()
    counts = extract_section_checkboxes(lines)
    if counts.total > 0:
        return counts
    return extract_all_checkboxes(lines)


def parse_task_status(task_path: str | os.PathLike) -> str:
    """Infer a task's status from the checkboxes in its markdown file."""
    try:
        with open(task_path, "r", encoding="utf-8", errors="replace") as handle:
            text = handle.read()
    except OSError as e:
        logger.debug(f"Cannot read {task_path} for status inference: {e}")
        return STATUS_PENDING
    return status_from_counts(count_checkboxes(text))
