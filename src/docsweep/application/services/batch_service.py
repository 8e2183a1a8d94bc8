from __future__ import annotations

import logging
import time
from typing import Callable

from docsweep.application.services.batch_guard import BatchGuard
from docsweep.application.services.cleaning_task_service import CleaningTaskService
from docsweep.application.services.progress_channel import BatchProgressTracker, ProgressChannel
from docsweep.application.services.vector_service import CLEANED_FILE_CONTENT_TYPE, VectorIndexService
from docsweep.core.errors import NotFoundError
from docsweep.domain.models.cleaning import TASK_TYPE_TEXT_CLEANUP, CleaningTask
from docsweep.infrastructure.archive.output_store import CleaningOutputStore
from docsweep.infrastructure.cleaning.transforms import clean_task

logger = logging.getLogger(__name__)


def describe_failure(exc: BaseException) -> str:
    message = str(exc).strip() or "no details"
    return f"{type(exc).__name__}: {message}"


class CleaningBatchProcessor:
    """Runs every pending cleaning task once, in priority order, one at a time."""

    def __init__(
        self,
        *,
        task_service: CleaningTaskService,
        guard: BatchGuard | None = None,
        channel: ProgressChannel | None = None,
        transform: Callable[[CleaningTask], str] = clean_task,
        vector_service: VectorIndexService | None = None,
        index_outputs: bool = False,
        index_model: str | None = None,
        output_store: CleaningOutputStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.task_service = task_service
        self.guard = guard or BatchGuard()
        self.channel = channel
        self.transform = transform
        self.vector_service = vector_service
        self.index_outputs = index_outputs
        self.index_model = index_model
        self.output_store = output_store
        self.clock = clock

    def is_running(self) -> bool:
        return self.guard.is_running()

    def run_pending(self, channel: ProgressChannel | None = None) -> int:
        """Process the pending snapshot and return the number of tasks attempted.

        Raises ``AlreadyRunningError`` when another batch holds the guard.
        """
        with self.guard.hold("cleaning batch"):
            tasks = self.task_service.list_pending()
            tracker = BatchProgressTracker(channel or self.channel, len(tasks), clock=self.clock)
            logger.info("Cleaning batch started with %s pending task(s)", len(tasks))
            tracker.start()

            for task in tasks:
                claimed = self.task_service.claim(task.id)
                if claimed is None:
                    logger.info("Task %s is no longer pending; skipping", task.id)
                    tracker.skip_item()
                    continue
                tracker.begin_item(claimed.id)
                tracker.end_item(succeeded=self._process(claimed))

            final = tracker.finish()

        logger.info(
            "Cleaning batch finished: %s completed, %s failed",
            final.processed,
            final.failed,
        )
        return final.attempted

    def _process(self, task: CleaningTask) -> bool:
        try:
            output = self.transform(task)
            self._index_output(task, output)
        except Exception as exc:
            reason = describe_failure(exc)
            logger.warning("Cleaning task %s failed: %s", task.id, reason)
            self._record_failure(task, reason)
            return False

        try:
            self.task_service.complete(task.id, output)
        except NotFoundError:
            logger.warning("Cleaning task %s was deleted while running", task.id)
            return False

        self._save_output(task, output)
        return True

    def _record_failure(self, task: CleaningTask, reason: str) -> None:
        try:
            self.task_service.fail(task.id, reason)
        except NotFoundError:
            logger.warning("Cleaning task %s was deleted while running", task.id)

    def _index_output(self, task: CleaningTask, output: str) -> None:
        # Gateway errors propagate and fail the item.
        if (
            not self.index_outputs
            or self.vector_service is None
            or task.task_type != TASK_TYPE_TEXT_CLEANUP
        ):
            return
        self.vector_service.index_content(
            task.file_id,
            CLEANED_FILE_CONTENT_TYPE,
            output,
            self.index_model,
        )

    def _save_output(self, task: CleaningTask, output: str) -> None:
        if self.output_store is None:
            return
        try:
            path = self.output_store.save_output(task, output)
            logger.debug("Saved output for task %s to %s", task.id, path)
        except OSError as exc:
            logger.warning("Could not save output for task %s: %s", task.id, exc)
