"""MCP server exposing festival progress tracking tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from festprogress.config import PROJECT_ROOT_ENV, ProgressConfig
from festprogress.festival_logging import setup_logging
from festprogress.workflow import ProgressWorkflow

mcp = FastMCP("fest-progress")


FESTIVAL_MARKERS = ("fest.yaml", ".fest")


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    seen: set[Path] = set()
    ordered: List[Path] = []
    for base in bases:
        if base not in seen:
            seen.add(base)
            ordered.append(base)
    return ordered


def _locate_festival_root() -> Optional[Path]:
    for base in _candidate_bases():
        for marker in FESTIVAL_MARKERS:
            if (base / marker).exists():
                return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_festival_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine festival root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )


def _workflow(root: Optional[str]) -> ProgressWorkflow:
    return ProgressWorkflow(_resolve_root(root), ProgressConfig.from_env())


def _workflow_optional(root: Optional[str]) -> Optional[ProgressWorkflow]:
    try:
        return _workflow(root)
    except ValueError:
        return None


@mcp.tool()
def task_progress(
    task: Optional[str] = None,
    phase: Optional[str] = None,
    sequence: Optional[str] = None,
    path: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Show the resolved status, progress and time spent for one task.
    Identify the task by a festival-relative path, or by name with an optional phase and sequence.
    A bare name that matches several files is rejected with the list of candidates."""

    return _workflow(root).task_progress(task, phase=phase, sequence=sequence, task_path=path)


@mcp.tool()
def update_task_progress(
    task: Optional[str] = None,
    phase: Optional[str] = None,
    sequence: Optional[str] = None,
    path: Optional[str] = None,
    complete: bool = False,
    in_progress: bool = False,
    progress: Optional[str] = None,
    blocker: Optional[str] = None,
    clear_blocker: bool = False,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Record explicit progress for a task. Pass exactly one of: complete, in_progress,
    progress (e.g. "50%"), blocker (a message) or clear_blocker."""

    return _workflow(root).update_task(
        task,
        phase=phase,
        sequence=sequence,
        task_path=path,
        complete=complete,
        in_progress=in_progress,
        progress=progress,
        blocker=blocker,
        clear_blocker=clear_blocker,
    )


@mcp.tool()
def festival_progress(root: Optional[str] = None) -> Dict[str, Any]:
    """Festival-wide progress snapshot with a breakdown per phase and the list of blockers."""

    return _workflow(root).festival_progress()


@mcp.tool()
def phase_progress(phase: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Progress snapshot for one phase directory (e.g. 001_PLANNING) with its sequences."""

    return _workflow(root).phase_progress(phase)


@mcp.tool()
def sequence_progress(phase: str, sequence: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Progress snapshot for one sequence directory inside a phase."""

    return _workflow(root).sequence_progress(phase, sequence)


@mcp.tool()
def classify_file(filename: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Classify a filename as task, gate, goal or unknown. Only tasks and gates count toward progress."""

    workflow = _workflow_optional(root) or ProgressWorkflow(Path.cwd(), ProgressConfig.from_env())
    return workflow.classify_file(filename)


@mcp.tool()
def migrate_times(path: Optional[str] = None, dry_run: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """Populate missing task times from file modification times for every festival under path.
    Use dry_run to preview without writing progress files."""

    return _workflow(root).migrate_times(path, dry_run=dry_run)


@mcp.resource("fest://progress")
def resource_progress() -> str:
    """Text overview of the current festival's progress."""

    workflow = _workflow_optional(None)
    if not workflow:
        return f"No festival root detected. Launch tools with a 'root' argument or set {PROJECT_ROOT_ENV}."

    try:
        return workflow.render_overview()
    except Exception as e:
        return f"Unable to compute festival progress: {e}"


def main() -> None:
    config = ProgressConfig.from_env()
    setup_logging(config.log_level, config.log_file)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
