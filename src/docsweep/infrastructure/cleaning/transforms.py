from __future__ import annotations

import json
import math
import re
from typing import Callable

from docsweep.core.errors import CleaningError
from docsweep.core.time import now_utc_iso
from docsweep.domain.models.cleaning import (
    TASK_TYPE_FORMAT_CONVERSION,
    TASK_TYPE_METADATA_EXTRACTION,
    TASK_TYPE_TEXT_CLEANUP,
    CleaningTask,
)

WORDS_PER_MINUTE = 200
MAX_CONSECUTIVE_BLANK_LINES = 2

_CONTENT_TYPE_RULES: list[tuple[str, tuple[str, ...]]] = [
    ("technical_documentation", ("api", "endpoint", "function")),
    ("code", ("def ", "function ", "class ", "import ", "const ", "var ")),
    ("email", ("dear ", "sincerely", "regards")),
    ("meeting_notes", ("meeting", "agenda", "minutes")),
    ("research", ("research", "study", "analysis")),
    ("article", ("introduction", "conclusion", "article")),
]
_LANGUAGE_WORDS: list[tuple[str, frozenset[str]]] = [
    ("english", frozenset({"the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"})),
    ("spanish", frozenset({"el", "la", "de", "que", "y", "a", "en", "un", "es", "se", "no", "te"})),
    ("french", frozenset({"le", "de", "et", "à", "un", "il", "être", "en", "avoir", "que", "pour"})),
]
_WORD_RE = re.compile(r"[^\W\d_]+", flags=re.UNICODE)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]")


def clean_task(task: CleaningTask) -> str:
    """Run the transform for ``task.task_type`` and return the output text."""
    transform = TRANSFORMS.get(task.task_type)
    if transform is None:
        raise CleaningError(f"Unknown cleaning task type: {task.task_type}")
    if task.input_content is None or not task.input_content.strip():
        raise CleaningError(f"Task {task.id} has no input content to process.")
    return transform(task)


def cleanup_text(task: CleaningTask) -> str:
    content = task.input_content or ""
    lines = (line.strip() for line in content.splitlines())
    return "\n".join(line for line in lines if line)


def extract_metadata(task: CleaningTask) -> str:
    content = task.input_content or ""
    lines = content.splitlines()
    empty_lines = sum(1 for line in lines if not line.strip())
    non_empty_lines = len(lines) - empty_lines
    words = content.split()
    sentence_count = max(0, len(_SENTENCE_SPLIT_RE.split(content)) - 1)

    metadata = {
        "file_id": task.file_id,
        "task_id": task.id,
        "processing_timestamp": now_utc_iso(),
        "content_statistics": {
            "total_lines": len(lines),
            "non_empty_lines": non_empty_lines,
            "empty_lines": empty_lines,
            "total_words": len(words),
            "unique_words": len({w.lower() for w in words}),
            "total_characters": len(content),
            "characters_no_spaces": sum(1 for c in content if not c.isspace()),
            "average_words_per_line": round(len(words) / non_empty_lines, 3) if non_empty_lines else 0.0,
            "average_characters_per_line": round(len(content) / non_empty_lines, 3) if non_empty_lines else 0.0,
            "reading_time_minutes": math.ceil(len(words) / WORDS_PER_MINUTE),
        },
        "content_analysis": {
            "content_type": detect_content_type(content),
            "language": detect_language(content),
            "complexity_score": round(complexity_score(content), 4),
            "has_numbers": any(c.isdigit() for c in content),
            "has_special_chars": any(not c.isalnum() and not c.isspace() for c in content),
            "sentence_count": sentence_count,
        },
    }
    return json.dumps(metadata, indent=2, ensure_ascii=False)


def convert_format(task: CleaningTask) -> str:
    content = task.input_content or ""
    normalized = content.replace("\r\n", "\n").replace("\r", "\n")
    out_lines: list[str] = []
    blank_run = 0
    for line in normalized.split("\n"):
        line = line.rstrip()
        if not line:
            blank_run += 1
            if blank_run > MAX_CONSECUTIVE_BLANK_LINES:
                continue
        else:
            blank_run = 0
        out_lines.append(line)
    converted = "\n".join(out_lines).strip("\n")
    non_ascii = sum(1 for c in converted if not c.isascii() and not c.isspace())

    return "\n".join(
        [
            "Format Conversion Report",
            "========================",
            f"Original size: {len(content.encode('utf-8'))} bytes",
            f"Converted size: {len(converted.encode('utf-8'))} bytes",
            f"Non-ASCII characters: {non_ascii}",
            "Line ending type: Unix (LF)",
            "",
            "Converted Content:",
            "==================",
            converted,
        ]
    )


def detect_content_type(text: str) -> str:
    lowered = text.lower()
    for label, needles in _CONTENT_TYPE_RULES:
        if any(needle in lowered for needle in needles):
            return label
    return "general_text"


def detect_language(text: str) -> str:
    tokens = [t.lower() for t in _WORD_RE.findall(text)]
    if not tokens:
        return "unknown"
    scores = {label: sum(1 for t in tokens if t in vocab) for label, vocab in _LANGUAGE_WORDS}
    best = max(scores, key=lambda label: scores[label])
    return best if scores[best] > 0 else "unknown"


def complexity_score(text: str) -> float:
    """Heuristic complexity in [0, 1] from word length, sentence length, symbols and capitals."""
    words = text.split()
    if not words:
        return 0.0
    avg_word_length = sum(len(w) for w in words) / len(words)
    sentences = max(1, len(_SENTENCE_SPLIT_RE.split(text)))
    avg_sentence_length = len(words) / sentences
    special = sum(1 for c in text if not c.isalnum() and not c.isspace())
    capitalized = sum(1 for w in words if w[:1].isupper())

    score = min(0.3, avg_word_length / 10.0)
    score += min(0.3, avg_sentence_length / 20.0)
    score += min(0.2, special / len(words))
    score += min(0.2, capitalized / len(words))
    return min(1.0, score)


TRANSFORMS: dict[str, Callable[[CleaningTask], str]] = {
    TASK_TYPE_TEXT_CLEANUP: cleanup_text,
    TASK_TYPE_METADATA_EXTRACTION: extract_metadata,
    TASK_TYPE_FORMAT_CONVERSION: convert_format,
}

OUTPUT_SUFFIXES = {
    TASK_TYPE_TEXT_CLEANUP: "cleaned",
    TASK_TYPE_METADATA_EXTRACTION: "metadata",
    TASK_TYPE_FORMAT_CONVERSION: "converted",
}
