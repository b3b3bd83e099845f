"""Unit tests for file times and time inference."""

import threading
from datetime import datetime, timedelta, timezone

from festprogress.filetime import (
    FileTimeCache,
    get_file_mod_time,
    infer_task_time,
    needs_time_inference,
)
from festprogress.models import TaskProgress

T0 = datetime(2025, 5, 10, 8, 0, tzinfo=timezone.utc)


class TestGetFileModTime:
    """Test cases for get_file_mod_time."""

    def test_existing_file(self, tmp_path, file_mtime):
        """Test an aware UTC mtime is returned."""
        path = tmp_path / "a.md"
        path.write_text("x", encoding="utf-8")
        file_mtime(path, T0)
        assert get_file_mod_time(path) == T0
        assert get_file_mod_time(path).tzinfo is not None

    def test_missing_file(self, tmp_path):
        """Test a missing file yields None."""
        assert get_file_mod_time(tmp_path / "missing.md") is None


class TestFileTimeCache:
    """Test cases for FileTimeCache."""

    def test_caches_until_invalidated(self, tmp_path, file_mtime):
        """Test cached values survive file changes until invalidated."""
        path = tmp_path / "a.md"
        path.write_text("x", encoding="utf-8")
        file_mtime(path, T0)
        cache = FileTimeCache()

        assert cache.get_mod_time(path) == T0
        file_mtime(path, T0 + timedelta(hours=1))
        assert cache.get_mod_time(path) == T0

        cache.invalidate(path)
        assert cache.get_mod_time(path) == T0 + timedelta(hours=1)

    def test_missing_files_are_cached(self, tmp_path):
        """Test None is cached for missing files."""
        cache = FileTimeCache()
        assert cache.get_mod_time(tmp_path / "missing.md") is None
        assert cache.size() == 1

    def test_clear(self, tmp_path):
        """Test clear empties the cache."""
        cache = FileTimeCache()
        cache.get_mod_time(tmp_path / "a")
        cache.get_mod_time(tmp_path / "b")
        assert cache.size() == 2
        cache.clear()
        assert cache.size() == 0

    def test_concurrent_access(self, tmp_path):
        """Test the cache from several threads."""
        paths = []
        for i in range(20):
            path = tmp_path / f"{i:02d}_t.md"
            path.write_text("x", encoding="utf-8")
            paths.append(path)
        cache = FileTimeCache()

        def worker():
            for path in paths:
                assert cache.get_mod_time(path) is not None

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert cache.size() == 20


class TestInferTaskTime:
    """Test cases for infer_task_time."""

    def test_bare_completed_record(self, tmp_path, file_mtime):
        """Test a record with no time fields is stamped with the file time."""
        path = tmp_path / "01_a.md"
        path.write_text("x", encoding="utf-8")
        file_mtime(path, T0)
        task = TaskProgress(task_id="01_a.md", status="completed")

        assert infer_task_time(path, task) is True
        assert task.started_at == task.completed_at == T0
        assert task.time_spent_minutes == 0

    def test_explicit_minutes_untouched(self, tmp_path):
        """Test a record with explicit minutes is never modified."""
        path = tmp_path / "01_a.md"
        path.write_text("x", encoding="utf-8")
        task = TaskProgress(task_id="01_a.md", status="completed", time_spent_minutes=15)

        assert infer_task_time(path, task) is False
        assert task.completed_at is None
        assert task.started_at is None

    def test_start_only_untouched(self, tmp_path, file_mtime):
        """Test a record with only a start time gains no completion or minutes."""
        path = tmp_path / "01_a.md"
        path.write_text("x", encoding="utf-8")
        file_mtime(path, T0 + timedelta(minutes=60))
        task = TaskProgress(task_id="01_a.md", status="completed", started_at=T0)

        assert infer_task_time(path, task) is False
        assert task.started_at == T0
        assert task.completed_at is None
        assert task.time_spent_minutes == 0

    def test_completion_only_untouched(self, tmp_path, file_mtime):
        """Test a record with only a completion stamp gains no start."""
        path = tmp_path / "01_a.md"
        path.write_text("x", encoding="utf-8")
        file_mtime(path, T0 + timedelta(days=3))
        task = TaskProgress(task_id="01_a.md", status="completed", completed_at=T0)

        assert infer_task_time(path, task) is False
        assert task.started_at is None
        assert task.completed_at == T0

    def test_open_record_untouched(self, tmp_path, file_mtime):
        """Test unfinished records are not stamped."""
        path = tmp_path / "01_a.md"
        path.write_text("x", encoding="utf-8")
        file_mtime(path, T0)
        task = TaskProgress(task_id="01_a.md", status="in_progress")

        assert infer_task_time(path, task) is False
        assert task.started_at is None

    def test_missing_file(self, tmp_path):
        """Test nothing is inferred without a file."""
        task = TaskProgress(task_id="x.md", status="completed")
        assert infer_task_time(tmp_path / "x.md", task) is False
        assert task.completed_at is None


class TestNeedsTimeInference:
    """Test cases for needs_time_inference."""

    def test_cases(self):
        """Test which records need inference."""
        assert needs_time_inference(None) is False
        assert needs_time_inference(TaskProgress(task_id="a", status="completed")) is True
        assert needs_time_inference(TaskProgress(task_id="a", status="in_progress")) is False
        assert needs_time_inference(
            TaskProgress(task_id="a", status="completed", time_spent_minutes=5)
        ) is False
        assert needs_time_inference(
            TaskProgress(task_id="a", status="completed", completed_at=T0)
        ) is False
        assert needs_time_inference(
            TaskProgress(task_id="a", status="completed", started_at=T0)
        ) is False
