from __future__ import annotations

import json
from pathlib import Path

from docsweep.domain.models.vector import VectorIndexEntry
from docsweep.infrastructure.db.sqlite import get_connection, write_transaction

INSERT_OK = "inserted"
INSERT_DIMENSION_MISMATCH = "dimension_mismatch"
INSERT_DUPLICATE = "duplicate"


class VectorIndexRepo:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def insert(self, entry: VectorIndexEntry) -> tuple[str, int]:
        """Insert ``entry`` and register its model dimension in one write transaction.

        Returns ``(status, established_dim)``. Nothing is written unless status
        is ``INSERT_OK``.
        """
        dim = len(entry.embedding_vector)
        with write_transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT embedding_dim FROM vector_models WHERE model_name = ?",
                (entry.model_name,),
            ).fetchone()
            if row is not None and int(row["embedding_dim"]) != dim:
                return INSERT_DIMENSION_MISMATCH, int(row["embedding_dim"])
            duplicate = conn.execute(
                """
                SELECT 1 FROM vector_index
                WHERE content_id = ?
                  AND content_type = ?
                  AND chunk_index = ?
                  AND model_name = ?
                """,
                (entry.content_id, entry.content_type, entry.chunk_index, entry.model_name),
            ).fetchone()
            if duplicate is not None:
                return INSERT_DUPLICATE, dim
            self._register_model(conn, entry.model_name, dim, entry.created_at)
            self._insert_row(conn, entry)
        return INSERT_OK, dim

    def replace_for_content(
        self,
        content_id: str,
        content_type: str,
        model_name: str,
        entries: list[VectorIndexEntry],
    ) -> tuple[str, int]:
        """Swap the content's entries under ``model_name`` for ``entries`` atomically.

        The new entries may change the model's dimension only when this content
        holds all of the model's current entries. On ``INSERT_DIMENSION_MISMATCH``
        the old entries are left untouched.
        """
        dim = len(entries[0].embedding_vector) if entries else 0
        with write_transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT embedding_dim FROM vector_models WHERE model_name = ?",
                (model_name,),
            ).fetchone()
            if entries and row is not None and int(row["embedding_dim"]) != dim:
                shared = conn.execute(
                    """
                    SELECT 1 FROM vector_index
                    WHERE model_name = ?
                      AND NOT (content_id = ? AND content_type = ?)
                    LIMIT 1
                    """,
                    (model_name, content_id, content_type),
                ).fetchone()
                if shared is not None:
                    return INSERT_DIMENSION_MISMATCH, int(row["embedding_dim"])
            conn.execute(
                """
                DELETE FROM vector_index
                WHERE content_id = ? AND content_type = ? AND model_name = ?
                """,
                (content_id, content_type, model_name),
            )
            self._forget_unused_models(conn)
            if entries:
                self._register_model(conn, model_name, dim, entries[0].created_at)
            for entry in entries:
                self._insert_row(conn, entry)
        return INSERT_OK, dim

    def get_by_id(self, entry_id: str) -> VectorIndexEntry | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM vector_index WHERE id = ?", (entry_id,)).fetchone()
        return self._to_entry(row) if row else None

    def get_model_dimension(self, model_name: str) -> int | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT embedding_dim FROM vector_models WHERE model_name = ?",
                (model_name,),
            ).fetchone()
        return int(row["embedding_dim"]) if row else None

    def list_all(self) -> list[VectorIndexEntry]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM vector_index ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [self._to_entry(row) for row in rows]

    def list_for_model(self, model_name: str) -> list[VectorIndexEntry]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM vector_index
                WHERE model_name = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (model_name,),
            ).fetchall()
        return [self._to_entry(row) for row in rows]

    def list_for_content(self, content_id: str, content_type: str) -> list[VectorIndexEntry]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM vector_index
                WHERE content_id = ? AND content_type = ?
                ORDER BY chunk_index ASC, model_name ASC
                """,
                (content_id, content_type),
            ).fetchall()
        return [self._to_entry(row) for row in rows]

    def delete_by_id(self, entry_id: str) -> int:
        with write_transaction(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM vector_index WHERE id = ?", (entry_id,))
            self._forget_unused_models(conn)
        return int(cursor.rowcount or 0)

    def delete_for_content(self, content_id: str, content_type: str) -> int:
        with write_transaction(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM vector_index WHERE content_id = ? AND content_type = ?",
                (content_id, content_type),
            )
            self._forget_unused_models(conn)
        return int(cursor.rowcount or 0)

    def clear(self) -> int:
        with write_transaction(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM vector_index")
            removed = int(cursor.rowcount or 0)
            conn.execute("DELETE FROM vector_models")
        return removed

    def stats_snapshot(self) -> dict[str, object]:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    AVG(embedding_dim) AS avg_dim,
                    MAX(created_at) AS last_updated,
                    COUNT(DISTINCT content_type || char(31) || content_id) AS distinct_contents
                FROM vector_index
                """
            ).fetchone()
            model_rows = conn.execute(
                """
                SELECT vi.model_name AS model_name, vm.embedding_dim AS embedding_dim
                FROM vector_index vi
                JOIN vector_models vm ON vm.model_name = vi.model_name
                GROUP BY vi.model_name, vm.embedding_dim
                ORDER BY vi.model_name
                """
            ).fetchall()
        return {
            "total": int(row["total"] or 0),
            "avg_dim": float(row["avg_dim"]) if row["avg_dim"] is not None else None,
            "last_updated": row["last_updated"],
            "distinct_contents": int(row["distinct_contents"] or 0),
            "dimensions_by_model": {str(r["model_name"]): int(r["embedding_dim"]) for r in model_rows},
        }

    @staticmethod
    def _forget_unused_models(conn) -> None:
        # A model's dimension stays established only while it has entries.
        conn.execute(
            """
            DELETE FROM vector_models
            WHERE model_name NOT IN (SELECT DISTINCT model_name FROM vector_index)
            """
        )

    @staticmethod
    def _to_entry(row) -> VectorIndexEntry:
        return VectorIndexEntry(
            id=row["id"],
            content_id=row["content_id"],
            content_type=row["content_type"],
            content=row["content"],
            embedding_vector=[float(x) for x in json.loads(row["embedding_json"])],
            model_name=row["model_name"],
            chunk_index=int(row["chunk_index"]),
            metadata=row["metadata"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _register_model(conn, model_name: str, dim: int, created_at: str) -> None:
        conn.execute(
            """
            INSERT OR IGNORE INTO vector_models (model_name, embedding_dim, created_at)
            VALUES (?, ?, ?)
            """,
            (model_name, dim, created_at),
        )

    @staticmethod
    def _insert_row(conn, entry: VectorIndexEntry) -> None:
        conn.execute(
            """
            INSERT INTO vector_index (
                id,
                content_id,
                content_type,
                content,
                embedding_json,
                embedding_dim,
                model_name,
                chunk_index,
                metadata,
                created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.content_id,
                entry.content_type,
                entry.content,
                json.dumps(entry.embedding_vector),
                len(entry.embedding_vector),
                entry.model_name,
                entry.chunk_index,
                entry.metadata,
                entry.created_at,
            ),
        )
