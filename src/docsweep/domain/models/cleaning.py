from __future__ import annotations

from dataclasses import dataclass, field

TASK_TYPE_TEXT_CLEANUP = "text_cleanup"
TASK_TYPE_METADATA_EXTRACTION = "metadata_extraction"
TASK_TYPE_FORMAT_CONVERSION = "format_conversion"

TASK_TYPES = (
    TASK_TYPE_TEXT_CLEANUP,
    TASK_TYPE_METADATA_EXTRACTION,
    TASK_TYPE_FORMAT_CONVERSION,
)

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TASK_STATUSES = (STATUS_PENDING, STATUS_RUNNING, STATUS_COMPLETED, STATUS_FAILED)
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})

# Allowed lifecycle edges; terminal states have none.
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_RUNNING}),
    STATUS_RUNNING: frozenset({STATUS_COMPLETED, STATUS_FAILED}),
    STATUS_COMPLETED: frozenset(),
    STATUS_FAILED: frozenset(),
}


@dataclass(slots=True)
class CleaningTask:
    id: str
    file_id: str
    task_type: str
    status: str
    priority: int
    input_content: str | None
    output_content: str | None
    error_message: str | None
    created_at: str
    started_at: str | None
    completed_at: str | None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(slots=True)
class CleaningTaskUpdate:
    status: str | None = None
    output_content: str | None = None
    error_message: str | None = None


@dataclass(slots=True)
class CleaningTaskStats:
    total: int
    pending: int
    running: int
    completed: int
    failed: int
    average_processing_seconds: float | None
    by_type: dict[str, dict[str, int]] = field(default_factory=dict)


@dataclass(slots=True)
class TaskPage:
    items: list[CleaningTask]
    page: int
    page_size: int
    total_items: int
    total_pages: int


@dataclass(slots=True)
class CleaningOutputFile:
    relpath: str
    task_type: str
    filename: str
    size_bytes: int
    modified_at: str
