from __future__ import annotations

import json

import pytest

from docsweep.core.errors import CleaningError
from docsweep.domain.models.cleaning import CleaningTask
from docsweep.infrastructure.cleaning.transforms import (
    clean_task,
    complexity_score,
    detect_content_type,
    detect_language,
)


def _task(task_type: str, content: str | None, file_id: str = "file-1") -> CleaningTask:
    return CleaningTask(
        id="task-1",
        file_id=file_id,
        task_type=task_type,
        status="running",
        priority=0,
        input_content=content,
        output_content=None,
        error_message=None,
        created_at="2026-01-01T00:00:00+00:00",
        started_at="2026-01-01T00:00:01+00:00",
        completed_at=None,
    )


def test_text_cleanup_trims_lines_and_drops_blanks() -> None:
    out = clean_task(_task("text_cleanup", "\n   first line   \n\n\t second\tline \n\n"))

    assert out == "first line\nsecond\tline"


def test_text_cleanup_is_idempotent() -> None:
    once = clean_task(_task("text_cleanup", "  a  \n\n b\r\n"))

    assert clean_task(_task("text_cleanup", once)) == once


def test_metadata_extraction_reports_statistics() -> None:
    content = "The meeting agenda has 3 items.\n\nWe meet at noon and leave by two.\n"

    report = json.loads(clean_task(_task("metadata_extraction", content, file_id="notes-7")))
    stats = report["content_statistics"]
    analysis = report["content_analysis"]

    assert report["file_id"] == "notes-7"
    assert report["task_id"] == "task-1"
    assert report["processing_timestamp"]
    assert stats["total_lines"] == 3
    assert stats["non_empty_lines"] == 2
    assert stats["empty_lines"] == 1
    assert stats["total_words"] == 14
    assert stats["total_characters"] == len(content)
    assert stats["reading_time_minutes"] == 1
    assert analysis["content_type"] == "meeting_notes"
    assert analysis["language"] == "english"
    assert analysis["has_numbers"] is True
    assert analysis["has_special_chars"] is True
    assert analysis["sentence_count"] == 2
    assert 0.0 <= analysis["complexity_score"] <= 1.0


def test_format_conversion_normalizes_line_endings_and_blank_runs() -> None:
    content = "\r\ntitle  \r\n\r\n\r\n\r\n\r\nbody café\rend\n\n"

    report = clean_task(_task("format_conversion", content))
    header, converted = report.split("Converted Content:\n==================\n", 1)

    assert header.startswith("Format Conversion Report")
    assert "Non-ASCII characters: 1" in header
    assert f"Original size: {len(content.encode('utf-8'))} bytes" in header
    assert converted == "title\n\n\nbody café\nend"
    assert "\r" not in converted


@pytest.mark.parametrize("content", [None, "", "   \n\t  "])
def test_missing_or_blank_input_is_a_cleaning_error(content: str | None) -> None:
    with pytest.raises(CleaningError):
        clean_task(_task("text_cleanup", content))


def test_unknown_type_is_a_cleaning_error() -> None:
    with pytest.raises(CleaningError, match="Unknown cleaning task type"):
        clean_task(_task("summarize", "text"))


def test_content_and_language_heuristics() -> None:
    assert detect_content_type("import os\nclass Thing: pass") == "code"
    assert detect_content_type("Dear team, kind regards") == "email"
    assert detect_content_type("just some words") == "general_text"
    assert detect_language("el perro y la casa de que") == "spanish"
    assert detect_language("12345 !!!") == "unknown"
    assert complexity_score("") == 0.0
    assert 0.0 < complexity_score("Short Words Here. And More.") <= 1.0
