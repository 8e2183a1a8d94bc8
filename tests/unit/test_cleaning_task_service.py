from __future__ import annotations

from pathlib import Path

import pytest

from docsweep.application.services.cleaning_task_service import CleaningTaskService
from docsweep.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from docsweep.domain.models.cleaning import CleaningTaskUpdate
from docsweep.infrastructure.db.repos.cleaning_task_repo import CleaningTaskRepo
from docsweep.infrastructure.db.sqlite import initialize_schema


def _service(tmp_path: Path) -> CleaningTaskService:
    db_path = tmp_path / "docsweep.db"
    initialize_schema(db_path)
    return CleaningTaskService(CleaningTaskRepo(db_path))


def test_create_starts_pending_without_timestamps(tmp_path: Path) -> None:
    service = _service(tmp_path)

    task = service.create("file-1", "text_cleanup", priority=4, input_content="  hello  ")
    stored = service.get(task.id)

    assert stored.status == "pending"
    assert stored.priority == 4
    assert stored.input_content == "  hello  "
    assert stored.started_at is None
    assert stored.completed_at is None
    assert stored.output_content is None
    assert stored.error_message is None


def test_create_rejects_unknown_type_and_blank_file(tmp_path: Path) -> None:
    service = _service(tmp_path)

    with pytest.raises(ValidationError):
        service.create("file-1", "summarize")
    with pytest.raises(ValidationError):
        service.create("   ", "text_cleanup")


def test_get_and_delete_unknown_task_raise_not_found(tmp_path: Path) -> None:
    service = _service(tmp_path)

    with pytest.raises(NotFoundError):
        service.get("missing")
    with pytest.raises(NotFoundError):
        service.delete("missing")
    with pytest.raises(NotFoundError):
        service.update("missing", CleaningTaskUpdate(status="failed", error_message="x"))


def test_lifecycle_sets_timestamps_and_blocks_terminal_rewrites(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = service.create("file-1", "text_cleanup", input_content="x")

    running = service.claim(task.id)
    assert running is not None
    assert running.status == "running"
    assert running.started_at is not None
    assert running.completed_at is None

    done = service.update(task.id, CleaningTaskUpdate(status="completed", output_content="x"))
    assert done.status == "completed"
    assert done.output_content == "x"
    assert done.started_at == running.started_at
    assert done.completed_at is not None

    with pytest.raises(InvalidTransitionError):
        service.update(task.id, CleaningTaskUpdate(status="failed", error_message="late"))
    with pytest.raises(InvalidTransitionError):
        service.update(task.id, CleaningTaskUpdate(output_content="rewritten"))
    assert service.get(task.id).output_content == "x"


def test_update_rejects_skipped_states_and_misplaced_fields(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = service.create("file-1", "format_conversion")

    with pytest.raises(InvalidTransitionError):
        service.update(task.id, CleaningTaskUpdate(status="completed", output_content="out"))
    with pytest.raises(InvalidTransitionError):
        service.update(task.id, CleaningTaskUpdate(status="running", output_content="early"))
    with pytest.raises(ValidationError):
        service.update(task.id, CleaningTaskUpdate(status="archived"))

    service.claim(task.id)
    with pytest.raises(InvalidTransitionError):
        service.update(task.id, CleaningTaskUpdate(status="failed", output_content="partial"))

    failed = service.fail(task.id, "CleaningError: broken input")
    assert failed.status == "failed"
    assert failed.error_message == "CleaningError: broken input"
    assert failed.output_content is None


def test_empty_update_returns_task_unchanged(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = service.create("file-1", "text_cleanup")

    same = service.update(task.id, CleaningTaskUpdate())

    assert same == task


def test_update_never_moves_a_task_to_running(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = service.create("file-1", "text_cleanup", input_content="x")

    with pytest.raises(InvalidTransitionError):
        service.update(task.id, CleaningTaskUpdate(status="running"))

    pending = service.get(task.id)
    assert pending.status == "pending"
    assert pending.started_at is None
    assert [t.id for t in service.list_pending()] == [task.id]

    claimed = service.claim(task.id)
    assert claimed is not None
    with pytest.raises(InvalidTransitionError):
        service.update(task.id, CleaningTaskUpdate(status="running"))


def test_claim_only_succeeds_once(tmp_path: Path) -> None:
    service = _service(tmp_path)
    task = service.create("file-1", "text_cleanup")

    claimed = service.claim(task.id)
    again = service.claim(task.id)

    assert claimed is not None
    assert claimed.status == "running"
    assert claimed.started_at is not None
    assert again is None


def test_list_orders_newest_first_and_filters(tmp_path: Path) -> None:
    service = _service(tmp_path)
    first = service.create("file-1", "text_cleanup", input_content="Quarterly REPORT draft")
    second = service.create("file-2", "metadata_extraction", input_content="minutes")
    third = service.create("file-3", "text_cleanup", input_content="notes")
    service.claim(third.id)
    service.fail(third.id, "ProviderUnavailableError: timed out")

    assert [t.id for t in service.list()] == [third.id, second.id, first.id]
    assert [t.id for t in service.list(task_type="text_cleanup")] == [third.id, first.id]
    assert [t.id for t in service.list(status="pending")] == [second.id, first.id]
    assert [t.id for t in service.list(query="report")] == [first.id]
    assert [t.id for t in service.list(query="TIMED OUT")] == [third.id]
    assert [t.id for t in service.list(query="metadata")] == [second.id]
    assert service.list(query="nothing like this") == []

    with pytest.raises(ValidationError):
        service.list(status="sleeping")


def test_pages_concatenate_to_the_filtered_list(tmp_path: Path) -> None:
    service = _service(tmp_path)
    for idx in range(7):
        service.create(f"file-{idx}", "text_cleanup", input_content=f"doc {idx}")
    service.create("other", "format_conversion", input_content="skip me")

    expected = [t.id for t in service.list(task_type="text_cleanup")]
    collected: list[str] = []
    first_page = service.paginate(1, 3, task_type="text_cleanup")
    for page in range(1, first_page.total_pages + 1):
        collected.extend(t.id for t in service.paginate(page, 3, task_type="text_cleanup").items)

    assert first_page.total_items == 7
    assert first_page.total_pages == 3
    assert collected == expected
    assert len(set(collected)) == len(collected)
    assert service.paginate(4, 3, task_type="text_cleanup").items == []


def test_paginate_rejects_non_positive_arguments(tmp_path: Path) -> None:
    service = _service(tmp_path)

    with pytest.raises(ValidationError):
        service.paginate(0, 10)
    with pytest.raises(ValidationError):
        service.paginate(1, 0)


def test_stats_totals_match_status_counts(tmp_path: Path) -> None:
    service = _service(tmp_path)
    assert service.stats().total == 0
    assert service.stats().average_processing_seconds is None

    a = service.create("file-1", "text_cleanup")
    b = service.create("file-1", "metadata_extraction")
    c = service.create("file-2", "text_cleanup")
    service.create("file-3", "format_conversion")
    service.claim(a.id)
    service.complete(a.id, "done")
    service.claim(b.id)
    service.fail(b.id, "CleaningError: nope")
    service.claim(c.id)

    stats = service.stats()

    assert stats.total == 4
    assert stats.total == stats.pending + stats.running + stats.completed + stats.failed
    assert (stats.pending, stats.running, stats.completed, stats.failed) == (1, 1, 1, 1)
    assert stats.by_type["text_cleanup"]["completed"] == 1
    assert stats.by_type["text_cleanup"]["running"] == 1
    assert stats.by_type["metadata_extraction"]["failed"] == 1
    assert stats.average_processing_seconds is not None
    assert stats.average_processing_seconds >= 0.0


def test_delete_all_returns_removed_count(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.create("file-1", "text_cleanup")
    service.create("file-2", "text_cleanup")

    assert service.delete_all() == 2
    assert service.delete_all() == 0
    assert service.list() == []


def test_create_for_file_queues_default_set_once(tmp_path: Path) -> None:
    service = _service(tmp_path)

    created = service.create_for_file("file-9", "Some content")
    skipped = service.create_for_file("file-9", "Some content")

    assert {(t.task_type, t.priority) for t in created} == {
        ("text_cleanup", 1),
        ("metadata_extraction", 2),
        ("format_conversion", 3),
    }
    assert all(t.input_content == "Some content" for t in created)
    assert skipped == []
    assert [t.task_type for t in service.list_pending()] == [
        "format_conversion",
        "metadata_extraction",
        "text_cleanup",
    ]


def test_list_pending_breaks_priority_ties_oldest_first(tmp_path: Path) -> None:
    service = _service(tmp_path)
    older = service.create("file-1", "text_cleanup", priority=2)
    newer = service.create("file-2", "text_cleanup", priority=2)
    top = service.create("file-3", "text_cleanup", priority=9)

    assert [t.id for t in service.list_pending()] == [top.id, older.id, newer.id]
