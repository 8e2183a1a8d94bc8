from __future__ import annotations

from dataclasses import asdict, dataclass

EVENT_STARTED = "started"
EVENT_PROGRESS = "progress"
EVENT_COMPLETED = "completed"

CLEANING_PROGRESS_CHANNEL = "cleaning-progress"
VECTOR_INDEXING_PROGRESS_CHANNEL = "vector-indexing-progress"


@dataclass(slots=True)
class BatchProgress:
    total: int
    processed: int = 0
    failed: int = 0
    progress_percent: int = 0
    estimated_remaining_seconds: float = 0.0
    current_item_id: str | None = None

    @property
    def attempted(self) -> int:
        return self.processed + self.failed


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    type: str
    channel: str
    progress: BatchProgress

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {"type": self.type}
        payload.update(asdict(self.progress))
        if payload.get("current_item_id") is None:
            payload.pop("current_item_id", None)
        return payload
