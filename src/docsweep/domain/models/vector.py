from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class VectorIndexEntry:
    id: str
    content_id: str
    content_type: str
    content: str
    embedding_vector: list[float]
    model_name: str
    chunk_index: int
    metadata: str | None
    created_at: str

    @property
    def dimension(self) -> int:
        return len(self.embedding_vector)


@dataclass(slots=True)
class NewVectorEntry:
    content_id: str
    content_type: str
    content: str
    embedding_vector: list[float]
    model_name: str
    chunk_index: int = 0
    metadata: str | None = None


@dataclass(slots=True)
class SimilaritySearchResult:
    content_id: str
    content_type: str
    content: str
    similarity_score: float
    metadata: str | None


@dataclass(slots=True)
class VectorIndexStats:
    total_vectors: int
    models_used: list[str]
    average_vector_dimension: float | None
    last_updated: str | None
    distinct_contents: int = 0
    dimensions_by_model: dict[str, int] = field(default_factory=dict)
