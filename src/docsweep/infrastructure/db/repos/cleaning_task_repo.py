from __future__ import annotations

from pathlib import Path

from docsweep.domain.models.cleaning import CleaningTask
from docsweep.infrastructure.db.sqlite import get_connection


class CleaningTaskRepo:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def insert(self, task: CleaningTask) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO cleaning_tasks (
                    id,
                    file_id,
                    task_type,
                    status,
                    priority,
                    input_content,
                    output_content,
                    error_message,
                    created_at,
                    started_at,
                    completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.file_id,
                    task.task_type,
                    task.status,
                    task.priority,
                    task.input_content,
                    task.output_content,
                    task.error_message,
                    task.created_at,
                    task.started_at,
                    task.completed_at,
                ),
            )
            conn.commit()

    def get_by_id(self, task_id: str) -> CleaningTask | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM cleaning_tasks WHERE id = ?",
                (task_id,),
            ).fetchone()
        return self._to_task(row) if row else None

    def list(self, *, status: str | None = None, task_type: str | None = None) -> list[CleaningTask]:
        clauses: list[str] = []
        params: list[object] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if task_type:
            clauses.append("task_type = ?")
            params.append(task_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM cleaning_tasks
                {where}
                ORDER BY created_at DESC, rowid DESC
                """,
                params,
            ).fetchall()
        return [self._to_task(row) for row in rows]

    def list_pending(self) -> list[CleaningTask]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM cleaning_tasks
                WHERE status = 'pending'
                ORDER BY priority DESC, created_at ASC, rowid ASC
                """
            ).fetchall()
        return [self._to_task(row) for row in rows]

    def list_completed(self, *, task_type: str | None = None) -> list[CleaningTask]:
        with get_connection(self.db_path) as conn:
            if task_type:
                rows = conn.execute(
                    """
                    SELECT * FROM cleaning_tasks
                    WHERE status = 'completed' AND task_type = ?
                    ORDER BY completed_at ASC, rowid ASC
                    """,
                    (task_type,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM cleaning_tasks
                    WHERE status = 'completed'
                    ORDER BY completed_at ASC, rowid ASC
                    """
                ).fetchall()
        return [self._to_task(row) for row in rows]

    def file_has_tasks(self, file_id: str) -> bool:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT 1 FROM cleaning_tasks WHERE file_id = ? LIMIT 1",
                (file_id,),
            ).fetchone()
        return row is not None

    def transition(
        self,
        task_id: str,
        *,
        from_status: str,
        to_status: str,
        output_content: str | None = None,
        error_message: str | None = None,
        started_at: str | None = None,
        completed_at: str | None = None,
    ) -> bool:
        """Compare-and-set a status change; False when the row is gone or no longer in ``from_status``."""
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE cleaning_tasks
                SET status = ?,
                    output_content = ?,
                    error_message = ?,
                    started_at = COALESCE(?, started_at),
                    completed_at = COALESCE(?, completed_at)
                WHERE id = ?
                  AND status = ?
                """,
                (
                    to_status,
                    output_content,
                    error_message,
                    started_at,
                    completed_at,
                    task_id,
                    from_status,
                ),
            )
            conn.commit()
        return int(cursor.rowcount or 0) == 1

    def delete(self, task_id: str) -> int:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM cleaning_tasks WHERE id = ?", (task_id,))
            conn.commit()
        return int(cursor.rowcount or 0)

    def delete_all(self) -> int:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM cleaning_tasks")
            conn.commit()
        return int(cursor.rowcount or 0)

    def aggregate_by_type_and_status(self) -> list[dict[str, object]]:
        # One statement so the counts and durations come from a single snapshot.
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT
                    task_type,
                    status,
                    COUNT(*) AS task_count,
                    SUM(
                        CASE
                            WHEN status = 'completed'
                             AND started_at IS NOT NULL
                             AND completed_at IS NOT NULL
                            THEN (julianday(completed_at) - julianday(started_at)) * 86400.0
                            ELSE 0
                        END
                    ) AS processing_seconds
                FROM cleaning_tasks
                GROUP BY task_type, status
                ORDER BY task_type, status
                """
            ).fetchall()
        return [
            {
                "task_type": str(row["task_type"]),
                "status": str(row["status"]),
                "count": int(row["task_count"] or 0),
                "processing_seconds": float(row["processing_seconds"] or 0.0),
            }
            for row in rows
        ]

    @staticmethod
    def _to_task(row) -> CleaningTask:
        return CleaningTask(
            id=row["id"],
            file_id=row["file_id"],
            task_type=row["task_type"],
            status=row["status"],
            priority=int(row["priority"]),
            input_content=row["input_content"],
            output_content=row["output_content"],
            error_message=row["error_message"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )
