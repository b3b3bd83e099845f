"""Unit tests for task ID normalization and single-task resolution."""

from datetime import datetime, timedelta, timezone

import pytest

from festprogress.errors import NotFoundError, ValidationError
from festprogress.filetime import FileTimeCache
from festprogress.models import TaskProgress
from festprogress.resolve import (
    ensure_markdown_filename,
    find_task_matches,
    lookup_task_progress,
    normalize_task_id,
    resolve_task_progress,
    resolve_task_reference,
    resolve_task_status,
    resolve_task_time,
    task_key_from_path,
)
from festprogress.store import ProgressStore

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
DESIGN = "001_PLANNING/01_setup/01_design.md"


@pytest.fixture
def store(festival):
    s = ProgressStore(festival)
    s.load()
    return s


class TestNormalizeTaskId:
    """Test cases for normalize_task_id."""

    def test_absolute_path(self, festival):
        """Test absolute paths become festival-relative."""
        assert normalize_task_id(festival, str(festival / DESIGN)) == DESIGN

    def test_relative_path_is_cleaned(self, festival):
        """Test redundant segments are removed."""
        assert normalize_task_id(festival, "001_PLANNING/./01_setup//01_design.md") == DESIGN
        assert normalize_task_id(festival, "001_PLANNING/x/../01_setup/01_design.md") == DESIGN

    def test_backslashes(self, festival):
        """Test Windows-style separators become forward slashes."""
        assert normalize_task_id(festival, "001_PLANNING\\01_setup\\01_design.md") == DESIGN

    def test_bare_name_unchanged(self, festival):
        """Test a bare filename is returned as given."""
        assert normalize_task_id(festival, "01_design.md") == "01_design.md"

    def test_empty_is_validation_error(self, festival):
        """Test an empty ID is rejected."""
        with pytest.raises(ValidationError):
            normalize_task_id(festival, "")

    def test_outside_festival(self, festival, tmp_path):
        """Test paths that escape the festival are rejected."""
        with pytest.raises(ValidationError):
            normalize_task_id(festival, "../elsewhere/01_a.md")
        with pytest.raises(ValidationError):
            normalize_task_id(festival, str(tmp_path / "other" / "01_a.md"))

    def test_root_itself_rejected(self, festival):
        """Test the festival directory is not a task."""
        with pytest.raises(ValidationError):
            task_key_from_path(festival, festival)


class TestFindTaskMatches:
    """Test cases for find_task_matches."""

    def test_ambiguous_name(self, festival):
        """Test both design files are found, sorted."""
        assert find_task_matches(festival, "01_design.md") == [
            "001_PLANNING/01_setup/01_design.md",
            "001_PLANNING/02_review/01_design.md",
        ]

    def test_without_extension(self, festival):
        """Test names match without their .md suffix."""
        assert find_task_matches(festival, "01_impl") == ["002_BUILD/01_core/01_impl.md"]

    def test_prunes_results_and_internal_dirs(self, festival, make_file):
        """Test results/ and .fest/ are not searched."""
        make_file(festival, ".fest/x/y/01_output.md")
        assert find_task_matches(festival, "01_output.md") == []

    def test_requires_phase_and_sequence_depth(self, festival, make_file):
        """Test files shallower than phase/sequence are not candidates."""
        make_file(festival, "001_PLANNING/05_loose.md")
        assert find_task_matches(festival, "05_loose.md") == []

    def test_untracked_names_ignored(self, festival):
        """Test goal documents never match."""
        assert find_task_matches(festival, "SEQUENCE_GOAL.md") == []

    def test_missing_festival(self, tmp_path):
        """Test a missing root is NotFound."""
        with pytest.raises(NotFoundError):
            find_task_matches(tmp_path / "nope", "01_a.md")


class TestResolveTaskReference:
    """Test cases for resolve_task_reference."""

    def test_unique_bare_name(self, festival):
        """Test a unique name resolves to its full path."""
        assert resolve_task_reference(festival, "02_research.md") == "001_PLANNING/01_setup/02_research.md"

    def test_ambiguous_bare_name(self, festival):
        """Test an ambiguous name lists every candidate."""
        with pytest.raises(ValidationError) as exc_info:
            resolve_task_reference(festival, "01_design.md")
        matches = exc_info.value.fields["matches"]
        assert matches == [
            "001_PLANNING/01_setup/01_design.md",
            "001_PLANNING/02_review/01_design.md",
        ]
        for match in matches:
            assert match in str(exc_info.value)

    def test_no_match_falls_through(self, festival):
        """Test an unknown bare name comes back unchanged."""
        assert resolve_task_reference(festival, "09_unknown.md") == "09_unknown.md"

    def test_phase_and_sequence(self, festival):
        """Test explicit qualification disambiguates."""
        assert resolve_task_reference(
            festival, "01_design", phase="001_PLANNING", sequence="02_review"
        ) == "001_PLANNING/02_review/01_design.md"

    def test_task_path(self, festival):
        """Test a path reference is normalized."""
        assert resolve_task_reference(festival, task_path=str(festival / DESIGN)) == DESIGN

    def test_invalid_combinations(self, festival):
        """Test conflicting or incomplete references."""
        with pytest.raises(ValidationError):
            resolve_task_reference(festival, "01_a.md", task_path=DESIGN)
        with pytest.raises(ValidationError):
            resolve_task_reference(festival, "01_a.md", phase="001_PLANNING")
        with pytest.raises(ValidationError):
            resolve_task_reference(festival, None, phase="001_PLANNING", sequence="01_setup")
        with pytest.raises(ValidationError):
            resolve_task_reference(festival, "   ")

    def test_ensure_markdown_filename(self):
        """Test the .md suffix helper."""
        assert ensure_markdown_filename("01_a") == "01_a.md"
        assert ensure_markdown_filename("01_a.md") == "01_a.md"


class TestResolveTaskStatus:
    """Test cases for resolve_task_status."""

    def test_stored_status_wins(self, festival, store):
        """Test the stored status overrides the checkboxes."""
        store.set_task(TaskProgress(task_id=DESIGN, status="pending"))
        assert resolve_task_status(store, festival, DESIGN) == "pending"

    def test_content_fallback(self, festival, store):
        """Test checkbox inference without a stored record."""
        assert resolve_task_status(store, festival, DESIGN) == "completed"
        assert resolve_task_status(store, festival, "001_PLANNING/01_setup/02_research.md") == "in_progress"

    def test_empty_stored_status_falls_back(self, festival, store):
        """Test a record without a status defers to the file."""
        store.set_task(TaskProgress(task_id=DESIGN, status=""))
        assert resolve_task_status(store, festival, DESIGN) == "completed"

    def test_stored_blocked_status_returned_verbatim(self, festival, store):
        """Test a legacy blocked status is returned unchanged."""
        store.set_task(TaskProgress(task_id=DESIGN, status="blocked", blocker_message="x"))
        assert resolve_task_status(store, festival, DESIGN) == "blocked"

    def test_legacy_key(self, festival, store):
        """Test a bare-name record is found by the full path."""
        store.set_task(TaskProgress(task_id="02_research.md", status="completed"))
        assert resolve_task_status(store, festival, festival / "001_PLANNING/01_setup/02_research.md") == "completed"

    def test_missing_file_without_record(self, festival, store):
        """Test a missing file reads as pending."""
        assert resolve_task_status(store, festival, "001_PLANNING/01_setup/09_gone.md") == "pending"

    def test_without_store(self, festival):
        """Test content inference alone."""
        assert resolve_task_status(None, festival, DESIGN) == "completed"


class TestResolveTaskTime:
    """Test cases for resolve_task_time."""

    def test_explicit_minutes(self, festival, store):
        """Test explicit minutes are returned unchanged."""
        store.set_task(TaskProgress(
            task_id=DESIGN, status="completed", time_spent_minutes=42,
            started_at=T0, completed_at=T0 + timedelta(hours=5),
        ))
        assert resolve_task_time(store, festival, DESIGN) == 42

    def test_span_to_completion(self, festival, store):
        """Test the start to completion span."""
        store.set_task(TaskProgress(
            task_id=DESIGN, status="completed", started_at=T0, completed_at=T0 + timedelta(minutes=75),
        ))
        assert resolve_task_time(store, festival, DESIGN) == 75

    def test_rounds_to_nearest_minute(self, festival, store):
        """Test partial minutes round."""
        store.set_task(TaskProgress(
            task_id=DESIGN, status="completed", started_at=T0,
            completed_at=T0 + timedelta(minutes=10, seconds=40),
        ))
        assert resolve_task_time(store, festival, DESIGN) == 11

    def test_negative_span_floors_at_zero(self, festival, store):
        """Test a completion before the start yields zero."""
        store.set_task(TaskProgress(
            task_id=DESIGN, status="completed", started_at=T0, completed_at=T0 - timedelta(minutes=5),
        ))
        assert resolve_task_time(store, festival, DESIGN) == 0

    def test_completed_uses_file_mtime(self, festival, store, file_mtime):
        """Test the file mtime stands in for a missing completion stamp."""
        file_mtime(festival / DESIGN, T0 + timedelta(minutes=60))
        store.set_task(TaskProgress(task_id=DESIGN, status="completed", started_at=T0))
        assert resolve_task_time(store, festival, DESIGN) == 60
        assert resolve_task_time(store, festival, DESIGN, cache=FileTimeCache()) == 60

    def test_in_progress_without_completion(self, festival, store):
        """Test an open task has no inferred time."""
        store.set_task(TaskProgress(task_id=DESIGN, status="in_progress", started_at=T0))
        assert resolve_task_time(store, festival, DESIGN) == 0

    def test_no_record_or_no_start(self, festival, store):
        """Test that status alone never produces time."""
        assert resolve_task_time(store, festival, DESIGN) == 0
        store.set_task(TaskProgress(task_id=DESIGN, status="completed"))
        assert resolve_task_time(store, festival, DESIGN) == 0


class TestResolveTaskProgress:
    """Test cases for resolve_task_progress."""

    def test_returns_backfilled_copy(self, festival, store, file_mtime):
        """Test the resolved view without touching the stored record."""
        file_mtime(festival / DESIGN, T0 + timedelta(minutes=30))
        stored = TaskProgress(task_id=DESIGN, status="completed", started_at=T0)
        store.set_task(stored)

        resolved = resolve_task_progress(store, festival, DESIGN)
        assert resolved is not stored
        assert resolved.completed_at == T0 + timedelta(minutes=30)
        assert resolved.time_spent_minutes == 30
        assert stored.completed_at is None
        assert stored.time_spent_minutes == 0
        assert not store.progress_file_path.exists()

    def test_empty_status_resolved_from_content(self, festival, store):
        """Test a record with no status gets the inferred one."""
        store.set_task(TaskProgress(task_id=DESIGN, progress=10))
        assert resolve_task_progress(store, festival, DESIGN).status == "completed"

    def test_none_without_record(self, festival, store):
        """Test None when nothing is stored."""
        assert resolve_task_progress(store, festival, DESIGN) is None

    def test_lookup_outside_festival_uses_filename(self, festival, store, tmp_path):
        """Test a path outside the festival still tries the legacy key."""
        store.set_task(TaskProgress(task_id="01_elsewhere.md", status="completed"))
        task = lookup_task_progress(store, festival, tmp_path / "01_elsewhere.md")
        assert task is not None
        assert task.status == "completed"
