from __future__ import annotations

import math

from docsweep.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from docsweep.core.ids import new_uuid
from docsweep.core.time import now_utc_iso
from docsweep.domain.models.cleaning import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RUNNING,
    STATUS_TRANSITIONS,
    TASK_STATUSES,
    TASK_TYPE_FORMAT_CONVERSION,
    TASK_TYPE_METADATA_EXTRACTION,
    TASK_TYPE_TEXT_CLEANUP,
    TASK_TYPES,
    CleaningTask,
    CleaningTaskStats,
    CleaningTaskUpdate,
    TaskPage,
)
from docsweep.infrastructure.db.repos.cleaning_task_repo import CleaningTaskRepo

# Task set queued for every newly registered file, as (task_type, priority).
DEFAULT_FILE_TASKS: tuple[tuple[str, int], ...] = (
    (TASK_TYPE_TEXT_CLEANUP, 1),
    (TASK_TYPE_METADATA_EXTRACTION, 2),
    (TASK_TYPE_FORMAT_CONVERSION, 3),
)


class CleaningTaskService:
    def __init__(self, task_repo: CleaningTaskRepo) -> None:
        self.task_repo = task_repo

    def create(
        self,
        file_id: str,
        task_type: str,
        priority: int = 0,
        input_content: str | None = None,
    ) -> CleaningTask:
        file_ref = (file_id or "").strip()
        if not file_ref:
            raise ValidationError("file_id is required.")
        normalized_type = (task_type or "").strip().lower()
        if normalized_type not in TASK_TYPES:
            raise ValidationError(
                f"Unsupported task type: {task_type}. Expected one of {', '.join(TASK_TYPES)}."
            )

        task = CleaningTask(
            id=new_uuid(),
            file_id=file_ref,
            task_type=normalized_type,
            status=STATUS_PENDING,
            priority=int(priority),
            input_content=input_content,
            output_content=None,
            error_message=None,
            created_at=now_utc_iso(),
            started_at=None,
            completed_at=None,
        )
        self.task_repo.insert(task)
        return task

    def create_for_file(self, file_id: str, content: str | None) -> list[CleaningTask]:
        """Queue the default task set for ``file_id``; files that already have tasks are skipped."""
        if self.task_repo.file_has_tasks(file_id):
            return []
        return [
            self.create(file_id, task_type, priority=priority, input_content=content)
            for task_type, priority in DEFAULT_FILE_TASKS
        ]

    def get(self, task_id: str) -> CleaningTask:
        task = self.task_repo.get_by_id(task_id)
        if task is None:
            raise NotFoundError(f"Cleaning task not found: {task_id}")
        return task

    def list(
        self,
        *,
        status: str | None = None,
        task_type: str | None = None,
        query: str | None = None,
    ) -> list[CleaningTask]:
        if status is not None and status not in TASK_STATUSES:
            raise ValidationError(f"Unsupported status filter: {status}")
        if task_type is not None and task_type not in TASK_TYPES:
            raise ValidationError(f"Unsupported task type filter: {task_type}")

        tasks = self.task_repo.list(status=status, task_type=task_type)
        needle = (query or "").strip().casefold()
        if not needle:
            return tasks
        return [task for task in tasks if _matches_query(task, needle)]

    def list_pending(self) -> list[CleaningTask]:
        return self.task_repo.list_pending()

    def list_completed(self, *, task_type: str | None = None) -> list[CleaningTask]:
        return self.task_repo.list_completed(task_type=task_type)

    def paginate(
        self,
        page: int,
        page_size: int,
        *,
        status: str | None = None,
        task_type: str | None = None,
        query: str | None = None,
    ) -> TaskPage:
        if page < 1:
            raise ValidationError(f"page must be >= 1, got {page}")
        if page_size < 1:
            raise ValidationError(f"page_size must be >= 1, got {page_size}")

        tasks = self.list(status=status, task_type=task_type, query=query)
        start = (page - 1) * page_size
        return TaskPage(
            items=tasks[start : start + page_size],
            page=page,
            page_size=page_size,
            total_items=len(tasks),
            total_pages=math.ceil(len(tasks) / page_size),
        )

    def update(self, task_id: str, update: CleaningTaskUpdate) -> CleaningTask:
        task = self.get(task_id)

        if update.status is None:
            if update.output_content is None and update.error_message is None:
                return task
            raise InvalidTransitionError(
                f"Task {task_id} output and error can only be set together with a terminal status."
            )

        target = update.status
        if target not in TASK_STATUSES:
            raise ValidationError(f"Unsupported status: {target}")
        if task.is_terminal:
            raise InvalidTransitionError(
                f"Task {task_id} is already {task.status}; finished tasks are not rewritten."
            )
        if target == STATUS_RUNNING:
            raise InvalidTransitionError(
                f"Task {task_id} can only be moved to running by the batch processor."
            )
        if target not in STATUS_TRANSITIONS[task.status]:
            raise InvalidTransitionError(f"Task {task_id} cannot move from {task.status} to {target}.")
        if update.output_content is not None and target != STATUS_COMPLETED:
            raise InvalidTransitionError(f"Task {task_id} output_content is only allowed when completed.")
        if update.error_message is not None and target != STATUS_FAILED:
            raise InvalidTransitionError(f"Task {task_id} error_message is only allowed when failed.")

        now = now_utc_iso()
        changed = self.task_repo.transition(
            task_id,
            from_status=task.status,
            to_status=target,
            output_content=update.output_content,
            error_message=update.error_message,
            completed_at=now,
        )
        if not changed:
            current = self.get(task_id)
            raise InvalidTransitionError(
                f"Task {task_id} changed concurrently; now {current.status}, cannot move to {target}."
            )
        return self.get(task_id)

    def claim(self, task_id: str) -> CleaningTask | None:
        """Move a pending task to running; None when another caller got there first."""
        changed = self.task_repo.transition(
            task_id,
            from_status=STATUS_PENDING,
            to_status=STATUS_RUNNING,
            started_at=now_utc_iso(),
        )
        if not changed:
            return None
        return self.task_repo.get_by_id(task_id)

    def complete(self, task_id: str, output_content: str) -> CleaningTask:
        return self.update(task_id, CleaningTaskUpdate(status=STATUS_COMPLETED, output_content=output_content))

    def fail(self, task_id: str, error_message: str) -> CleaningTask:
        return self.update(task_id, CleaningTaskUpdate(status=STATUS_FAILED, error_message=error_message))

    def delete(self, task_id: str) -> None:
        if self.task_repo.delete(task_id) == 0:
            raise NotFoundError(f"Cleaning task not found: {task_id}")

    def delete_all(self) -> int:
        return self.task_repo.delete_all()

    def stats(self) -> CleaningTaskStats:
        counts = {status: 0 for status in TASK_STATUSES}
        by_type: dict[str, dict[str, int]] = {}
        completed_seconds = 0.0

        for row in self.task_repo.aggregate_by_type_and_status():
            status = str(row["status"])
            count = int(row["count"])
            counts[status] = counts.get(status, 0) + count
            by_type.setdefault(str(row["task_type"]), {s: 0 for s in TASK_STATUSES})[status] = count
            if status == STATUS_COMPLETED:
                completed_seconds += float(row["processing_seconds"])

        completed = counts[STATUS_COMPLETED]
        return CleaningTaskStats(
            total=sum(counts.values()),
            pending=counts[STATUS_PENDING],
            running=counts[STATUS_RUNNING],
            completed=completed,
            failed=counts[STATUS_FAILED],
            average_processing_seconds=(completed_seconds / completed) if completed else None,
            by_type=by_type,
        )


def _matches_query(task: CleaningTask, needle: str) -> bool:
    for value in (
        task.task_type,
        task.status,
        task.input_content,
        task.output_content,
        task.error_message,
    ):
        if value and needle in value.casefold():
            return True
    return False
