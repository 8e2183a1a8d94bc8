from __future__ import annotations

import json
import logging
import math

from docsweep.application.services.batch_guard import BatchGuard
from docsweep.application.services.progress_channel import BatchProgressTracker, ProgressChannel
from docsweep.core.errors import (
    ConfigurationError,
    DimensionMismatchError,
    DocsweepError,
    NotFoundError,
    ValidationError,
)
from docsweep.core.ids import new_uuid
from docsweep.core.time import now_utc_iso
from docsweep.domain.models.cleaning import TASK_TYPE_TEXT_CLEANUP
from docsweep.domain.models.vector import NewVectorEntry, VectorIndexEntry, VectorIndexStats
from docsweep.infrastructure.db.repos.cleaning_task_repo import CleaningTaskRepo
from docsweep.infrastructure.db.repos.vector_index_repo import (
    INSERT_DIMENSION_MISMATCH,
    INSERT_DUPLICATE,
    VectorIndexRepo,
)
from docsweep.infrastructure.embedding import OllamaEmbeddingGateway, SentenceTransformerGateway
from docsweep.infrastructure.vector.chunking import TextChunker

logger = logging.getLogger(__name__)

CLEANED_FILE_CONTENT_TYPE = "cleaned_file"


class VectorIndexService:
    def __init__(
        self,
        *,
        vector_repo: VectorIndexRepo,
        gateway: OllamaEmbeddingGateway | SentenceTransformerGateway | None = None,
        chunker: TextChunker | None = None,
        default_model: str = "nomic-embed-text",
        task_repo: CleaningTaskRepo | None = None,
        guard: BatchGuard | None = None,
        channel: ProgressChannel | None = None,
    ) -> None:
        self.vector_repo = vector_repo
        self.gateway = gateway
        self.chunker = chunker or TextChunker()
        self.default_model = default_model
        self.task_repo = task_repo
        self.guard = guard or BatchGuard()
        self.channel = channel

    def insert(self, new_entry: NewVectorEntry) -> VectorIndexEntry:
        entry = self._build_entry(new_entry)
        status, established_dim = self.vector_repo.insert(entry)
        if status == INSERT_DIMENSION_MISMATCH:
            raise DimensionMismatchError(
                f"Model {entry.model_name} stores {established_dim}-dimensional vectors; "
                f"got {len(entry.embedding_vector)}."
            )
        if status == INSERT_DUPLICATE:
            raise ValidationError(
                "Vector entry already exists for "
                f"{entry.content_type}:{entry.content_id} chunk {entry.chunk_index} "
                f"under model {entry.model_name}."
            )
        return entry

    def get(self, entry_id: str) -> VectorIndexEntry:
        entry = self.vector_repo.get_by_id(entry_id)
        if entry is None:
            raise NotFoundError(f"Vector entry not found: {entry_id}")
        return entry

    def delete_by_id(self, entry_id: str) -> None:
        if self.vector_repo.delete_by_id(entry_id) == 0:
            raise NotFoundError(f"Vector entry not found: {entry_id}")

    def delete_for_content(self, content_id: str, content_type: str) -> int:
        return self.vector_repo.delete_for_content(content_id, content_type)

    def clear(self) -> int:
        removed = self.vector_repo.clear()
        # Every model may take a new length after a wipe.
        forget = getattr(self.gateway, "forget_dimensions", None)
        if forget is not None:
            forget()
        logger.info("Cleared %s vector entries", removed)
        return removed

    def list_all(self) -> list[VectorIndexEntry]:
        return self.vector_repo.list_all()

    def list_for_content(self, content_id: str, content_type: str) -> list[VectorIndexEntry]:
        return self.vector_repo.list_for_content(content_id, content_type)

    def stats(self) -> VectorIndexStats:
        snapshot = self.vector_repo.stats_snapshot()
        dimensions = dict(snapshot["dimensions_by_model"])
        return VectorIndexStats(
            total_vectors=int(snapshot["total"]),
            models_used=sorted(dimensions),
            average_vector_dimension=snapshot["avg_dim"],
            last_updated=snapshot["last_updated"],
            distinct_contents=int(snapshot["distinct_contents"]),
            dimensions_by_model=dimensions,
        )

    def index_content(
        self,
        content_id: str,
        content_type: str,
        text: str,
        model: str | None = None,
    ) -> list[VectorIndexEntry]:
        """Chunk, embed and store ``text``, replacing the content's entries for ``model``.

        All chunks are embedded and validated first, then the old entries are
        swapped for the new ones in a single transaction. Any failure leaves
        the previous entries in place.
        """
        gateway = self._require_gateway()
        model_name = model or self.default_model
        chunks = self.chunker.build_chunks(text)
        vectors = [gateway.embed(chunk.text_content, model_name) for chunk in chunks]

        entries = [
            self._build_entry(
                NewVectorEntry(
                    content_id=content_id,
                    content_type=content_type,
                    content=chunk.text_content,
                    embedding_vector=vector,
                    model_name=model_name,
                    chunk_index=chunk.chunk_index,
                    metadata=json.dumps(
                        {"start_offset": chunk.start_offset, "end_offset": chunk.end_offset}
                    ),
                )
            )
            for chunk, vector in zip(chunks, vectors, strict=True)
        ]
        lengths = {len(entry.embedding_vector) for entry in entries}
        if len(lengths) > 1:
            raise DimensionMismatchError(
                f"Model {model_name} returned vectors of differing lengths {sorted(lengths)} "
                f"for {content_type}:{content_id}."
            )

        status, established_dim = self.vector_repo.replace_for_content(
            content_id, content_type, model_name, entries
        )
        if status == INSERT_DIMENSION_MISMATCH:
            raise DimensionMismatchError(
                f"Model {model_name} stores {established_dim}-dimensional vectors; "
                f"got {lengths.pop()}."
            )
        logger.debug(
            "Indexed %s chunk(s) for %s:%s with %s", len(entries), content_type, content_id, model_name
        )
        return entries

    def index_completed_tasks(
        self,
        *,
        task_type: str = TASK_TYPE_TEXT_CLEANUP,
        model: str | None = None,
        channel: ProgressChannel | None = None,
    ) -> int:
        """Index the output of every completed task of ``task_type``; returns the count attempted."""
        if self.task_repo is None:
            raise ConfigurationError("Indexing completed tasks requires a cleaning task repository.")
        self._require_gateway()

        with self.guard.hold("vector indexing"):
            tasks = [t for t in self.task_repo.list_completed(task_type=task_type) if t.output_content]
            tracker = BatchProgressTracker(channel or self.channel, len(tasks))
            logger.info("Vector indexing started for %s completed task(s)", len(tasks))
            tracker.start()
            for task in tasks:
                tracker.begin_item(task.id)
                try:
                    self.index_content(
                        task.file_id,
                        CLEANED_FILE_CONTENT_TYPE,
                        task.output_content or "",
                        model,
                    )
                except DocsweepError as exc:
                    logger.warning("Vector indexing failed for task %s: %s", task.id, exc)
                    tracker.end_item(succeeded=False)
                else:
                    tracker.end_item(succeeded=True)
            final = tracker.finish()
        logger.info(
            "Vector indexing finished: %s indexed, %s failed", final.processed, final.failed
        )
        return final.attempted

    def _require_gateway(self) -> OllamaEmbeddingGateway | SentenceTransformerGateway:
        if self.gateway is None:
            raise ConfigurationError("No embedding gateway configured for vector indexing.")
        return self.gateway

    def _build_entry(self, new_entry: NewVectorEntry) -> VectorIndexEntry:
        if not new_entry.content_id.strip():
            raise ValidationError("content_id is required.")
        if not new_entry.content_type.strip():
            raise ValidationError("content_type is required.")
        if not new_entry.model_name.strip():
            raise ValidationError("model_name is required.")
        if new_entry.chunk_index < 0:
            raise ValidationError(f"chunk_index must be >= 0, got {new_entry.chunk_index}")
        if not new_entry.embedding_vector:
            raise ValidationError("embedding_vector must not be empty.")

        vector = [float(x) for x in new_entry.embedding_vector]
        if not all(math.isfinite(x) for x in vector):
            raise ValidationError("embedding_vector contains non-finite values.")

        return VectorIndexEntry(
            id=new_uuid(),
            content_id=new_entry.content_id,
            content_type=new_entry.content_type,
            content=new_entry.content,
            embedding_vector=vector,
            model_name=new_entry.model_name,
            chunk_index=new_entry.chunk_index,
            metadata=new_entry.metadata,
            created_at=now_utc_iso(),
        )
