from __future__ import annotations

import json
import math
from pathlib import Path

import pytest

from docsweep.application.services.batch_guard import BatchGuard
from docsweep.application.services.cleaning_task_service import CleaningTaskService
from docsweep.application.services.progress_channel import ProgressChannel
from docsweep.application.services.vector_service import VectorIndexService
from docsweep.core.errors import (
    AlreadyRunningError,
    ConfigurationError,
    DimensionMismatchError,
    NotFoundError,
    ProviderUnavailableError,
    ValidationError,
)
from docsweep.domain.models.progress import ProgressEvent
from docsweep.domain.models.vector import NewVectorEntry
from docsweep.infrastructure.db.repos.cleaning_task_repo import CleaningTaskRepo
from docsweep.infrastructure.db.repos.vector_index_repo import VectorIndexRepo
from docsweep.infrastructure.db.sqlite import initialize_schema
from docsweep.infrastructure.vector.chunking import TextChunker


class _FakeGateway:
    provider_name = "fake"

    def __init__(self, dim: int = 3) -> None:
        self.dim = dim
        self.calls: list[tuple[str, str]] = []

    def embed(self, text: str, model: str) -> list[float]:
        self.calls.append((text, model))
        return [float(len(text))] + [1.0] * (self.dim - 1)


class _FailingGateway:
    provider_name = "failing"

    def embed(self, text: str, model: str) -> list[float]:
        raise ProviderUnavailableError("Cannot reach embedding service")


class _ForgetfulGateway(_FakeGateway):
    def __init__(self) -> None:
        super().__init__()
        self.forgotten: list[str | None] = []

    def forget_dimensions(self, model: str | None = None) -> None:
        self.forgotten.append(model)


def _db(tmp_path: Path) -> Path:
    db_path = tmp_path / "docsweep.db"
    initialize_schema(db_path)
    return db_path


def _service(tmp_path: Path, gateway=None, **kwargs) -> VectorIndexService:
    db_path = _db(tmp_path)
    return VectorIndexService(
        vector_repo=VectorIndexRepo(db_path),
        gateway=gateway,
        task_repo=CleaningTaskRepo(db_path),
        **kwargs,
    )


def _entry(content_id: str, vector: list[float], model: str = "m", chunk_index: int = 0) -> NewVectorEntry:
    return NewVectorEntry(
        content_id=content_id,
        content_type="doc",
        content=f"text of {content_id}",
        embedding_vector=vector,
        model_name=model,
        chunk_index=chunk_index,
    )


def test_first_insert_fixes_the_model_dimension(tmp_path: Path) -> None:
    service = _service(tmp_path)
    first = service.insert(_entry("a", [1.0, 0.0, 0.0]))

    with pytest.raises(DimensionMismatchError):
        service.insert(_entry("b", [1.0, 0.0]))

    stats = service.stats()
    assert stats.total_vectors == 1
    assert stats.models_used == ["m"]
    assert stats.dimensions_by_model == {"m": 3}
    assert stats.average_vector_dimension == 3.0
    assert service.get(first.id).embedding_vector == [1.0, 0.0, 0.0]


def test_another_model_can_use_a_different_dimension(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.insert(_entry("a", [1.0, 0.0, 0.0], model="small"))
    service.insert(_entry("a", [0.1] * 5, model="large"))

    stats = service.stats()
    assert stats.models_used == ["large", "small"]
    assert stats.dimensions_by_model == {"large": 5, "small": 3}
    assert stats.distinct_contents == 1
    assert stats.average_vector_dimension == 4.0


def test_insert_rejects_bad_entries(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.insert(_entry("a", [1.0, 2.0]))

    with pytest.raises(ValidationError):
        service.insert(_entry("a", [3.0, 4.0]))
    with pytest.raises(ValidationError):
        service.insert(_entry("b", []))
    with pytest.raises(ValidationError):
        service.insert(_entry("c", [1.0, math.nan]))
    with pytest.raises(ValidationError):
        service.insert(_entry("d", [1.0, math.inf]))
    with pytest.raises(ValidationError):
        service.insert(_entry("e", [1.0, 2.0], chunk_index=-1))
    with pytest.raises(ValidationError):
        service.insert(_entry("  ", [1.0, 2.0]))
    with pytest.raises(ValidationError):
        service.insert(_entry("f", [1.0, 2.0], model=""))

    assert service.stats().total_vectors == 1


def test_get_and_delete_unknown_entry_raise_not_found(tmp_path: Path) -> None:
    service = _service(tmp_path)

    with pytest.raises(NotFoundError):
        service.get("nope")
    with pytest.raises(NotFoundError):
        service.delete_by_id("nope")


def test_clear_resets_dimensions_and_is_idempotent(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.insert(_entry("a", [1.0, 0.0, 0.0]))
    service.insert(_entry("b", [0.0, 1.0, 0.0]))

    assert service.clear() == 2
    assert service.clear() == 0
    stats = service.stats()
    assert stats.total_vectors == 0
    assert stats.models_used == []
    assert stats.average_vector_dimension is None
    assert stats.last_updated is None

    service.insert(_entry("c", [1.0, 0.0]))
    assert service.stats().dimensions_by_model == {"m": 2}


def test_deleting_the_last_entry_frees_the_model_dimension(tmp_path: Path) -> None:
    service = _service(tmp_path)
    only = service.insert(_entry("a", [1.0, 0.0, 0.0]))

    service.delete_by_id(only.id)
    service.insert(_entry("a", [1.0, 0.0]))

    assert service.stats().dimensions_by_model == {"m": 2}


def test_delete_for_content_spans_models(tmp_path: Path) -> None:
    service = _service(tmp_path)
    service.insert(_entry("a", [1.0, 0.0], model="one"))
    service.insert(_entry("a", [1.0, 0.0], model="one", chunk_index=1))
    service.insert(_entry("a", [1.0, 0.0, 0.0], model="two"))
    service.insert(_entry("b", [1.0, 0.0], model="one"))

    assert service.delete_for_content("a", "doc") == 3
    assert service.delete_for_content("a", "doc") == 0
    assert [e.content_id for e in service.list_all()] == ["b"]
    assert service.stats().models_used == ["one"]


def test_list_all_is_newest_first(tmp_path: Path) -> None:
    service = _service(tmp_path)
    first = service.insert(_entry("a", [1.0]))
    second = service.insert(_entry("b", [1.0]))
    third = service.insert(_entry("c", [1.0]))

    assert [e.id for e in service.list_all()] == [third.id, second.id, first.id]


def test_index_content_chunks_and_stores_offsets(tmp_path: Path) -> None:
    gateway = _FakeGateway()
    service = _service(
        tmp_path,
        gateway=gateway,
        chunker=TextChunker(max_chars=40),
        default_model="fake-embed",
    )
    text = "First paragraph about rivers.\n\nSecond paragraph about mountains."

    entries = service.index_content("doc-1", "document", text)

    assert [e.chunk_index for e in entries] == [0, 1]
    assert [e.model_name for e in entries] == ["fake-embed", "fake-embed"]
    assert len(gateway.calls) == 2
    offsets = json.loads(entries[0].metadata or "{}")
    assert text[offsets["start_offset"] : offsets["end_offset"]].strip() == entries[0].content
    assert len(service.list_for_content("doc-1", "document")) == 2


def test_reindexing_replaces_previous_entries_for_the_model(tmp_path: Path) -> None:
    service = _service(tmp_path, gateway=_FakeGateway(), default_model="fake-embed")
    service.index_content("doc-1", "document", "old words")
    service.insert(
        NewVectorEntry(
            content_id="doc-1",
            content_type="document",
            content="kept",
            embedding_vector=[1.0, 2.0],
            model_name="other",
        )
    )

    service.index_content("doc-1", "document", "new words here")

    entries = service.list_for_content("doc-1", "document")
    assert sorted((e.model_name, e.content) for e in entries) == [
        ("fake-embed", "new words here"),
        ("other", "kept"),
    ]


def test_gateway_failure_keeps_existing_entries(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    working = VectorIndexService(
        vector_repo=VectorIndexRepo(db_path), gateway=_FakeGateway(), default_model="fake-embed"
    )
    working.index_content("doc-1", "document", "original text")
    broken = VectorIndexService(
        vector_repo=VectorIndexRepo(db_path), gateway=_FailingGateway(), default_model="fake-embed"
    )

    with pytest.raises(ProviderUnavailableError):
        broken.index_content("doc-1", "document", "replacement text")

    assert [e.content for e in working.list_for_content("doc-1", "document")] == ["original text"]


def test_reindex_with_wrong_dimension_keeps_existing_entries(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    three = VectorIndexService(
        vector_repo=VectorIndexRepo(db_path), gateway=_FakeGateway(dim=3), default_model="fake-embed"
    )
    three.index_content("doc-1", "document", "original text")
    three.index_content("doc-2", "document", "holds the dimension")
    four = VectorIndexService(
        vector_repo=VectorIndexRepo(db_path), gateway=_FakeGateway(dim=4), default_model="fake-embed"
    )

    with pytest.raises(DimensionMismatchError):
        four.index_content("doc-1", "document", "replacement text")

    assert [e.content for e in three.list_for_content("doc-1", "document")] == ["original text"]
    assert three.stats().dimensions_by_model == {"fake-embed": 3}
    assert three.stats().total_vectors == 2


def test_reindexing_the_only_content_may_change_the_dimension(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    VectorIndexService(
        vector_repo=VectorIndexRepo(db_path), gateway=_FakeGateway(dim=3), default_model="fake-embed"
    ).index_content("doc-1", "document", "original text")
    four = VectorIndexService(
        vector_repo=VectorIndexRepo(db_path), gateway=_FakeGateway(dim=4), default_model="fake-embed"
    )

    entries = four.index_content("doc-1", "document", "replacement text")

    assert [len(e.embedding_vector) for e in entries] == [4]
    assert four.stats().dimensions_by_model == {"fake-embed": 4}
    assert [e.content for e in four.list_for_content("doc-1", "document")] == ["replacement text"]


def test_clear_lets_the_gateway_accept_a_new_length(tmp_path: Path) -> None:
    gateway = _ForgetfulGateway()
    service = _service(tmp_path, gateway=gateway, default_model="fake-embed")
    service.index_content("doc-1", "document", "first")

    service.clear()

    assert gateway.forgotten == [None]


def test_index_content_without_gateway_is_a_configuration_error(tmp_path: Path) -> None:
    service = _service(tmp_path)

    with pytest.raises(ConfigurationError):
        service.index_content("doc-1", "document", "text")


def test_index_completed_tasks_reports_progress(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    tasks = CleaningTaskService(CleaningTaskRepo(db_path))
    for file_id in ("f1", "f2"):
        task = tasks.create(file_id, "text_cleanup", input_content="raw")
        tasks.claim(task.id)
        tasks.complete(task.id, f"clean text for {file_id}")
    tasks.create("f3", "text_cleanup", input_content="still pending")

    channel = ProgressChannel("vector-indexing-progress")
    events: list[ProgressEvent] = []
    channel.publish = events.append  # type: ignore[method-assign]
    service = VectorIndexService(
        vector_repo=VectorIndexRepo(db_path),
        gateway=_FakeGateway(),
        default_model="fake-embed",
        task_repo=CleaningTaskRepo(db_path),
    )

    attempted = service.index_completed_tasks(channel=channel)

    assert attempted == 2
    assert events[0].type == "started"
    assert events[0].progress.total == 2
    assert events[-1].type == "completed"
    assert events[-1].progress.processed == 2
    assert {e.content_id for e in service.list_all()} == {"f1", "f2"}
    assert {e.content_type for e in service.list_all()} == {"cleaned_file"}


def test_index_completed_tasks_refuses_to_overlap(tmp_path: Path) -> None:
    guard = BatchGuard()
    service = _service(tmp_path, gateway=_FakeGateway(), guard=guard)

    with guard.hold("cleaning batch"):
        with pytest.raises(AlreadyRunningError):
            service.index_completed_tasks()

    assert service.index_completed_tasks() == 0


def test_index_completed_tasks_counts_failures(tmp_path: Path) -> None:
    db_path = _db(tmp_path)
    tasks = CleaningTaskService(CleaningTaskRepo(db_path))
    task = tasks.create("f1", "text_cleanup", input_content="raw")
    tasks.claim(task.id)
    tasks.complete(task.id, "clean")
    channel = ProgressChannel("vector-indexing-progress")
    subscription = channel.subscribe()
    service = VectorIndexService(
        vector_repo=VectorIndexRepo(db_path),
        gateway=_FailingGateway(),
        task_repo=CleaningTaskRepo(db_path),
        channel=channel,
    )

    attempted = service.index_completed_tasks()
    final = subscription.wait_until_completed(timeout=1.0)

    assert attempted == 1
    assert final is not None
    assert final.progress.failed == 1
    assert final.progress.processed == 0
    assert service.list_all() == []


def test_wrong_length_under_an_established_model_changes_nothing(tmp_path: Path) -> None:
    service = _service(tmp_path)
    for idx in range(3):
        service.insert(_entry("report", [0.5] * 8, model="m1", chunk_index=idx))

    with pytest.raises(DimensionMismatchError):
        service.insert(_entry("report", [0.5] * 4, model="m1", chunk_index=3))

    assert service.stats().total_vectors == 3
    assert service.stats().dimensions_by_model == {"m1": 8}
