from __future__ import annotations

import math

from docsweep.core.errors import DimensionMismatchError
from docsweep.domain.models.vector import SimilaritySearchResult
from docsweep.infrastructure.db.repos.vector_index_repo import VectorIndexRepo
from docsweep.infrastructure.embedding import OllamaEmbeddingGateway, SentenceTransformerGateway


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine of the angle between ``a`` and ``b``; 0.0 when either has zero norm."""
    if len(a) != len(b):
        raise DimensionMismatchError(f"Cannot compare vectors of length {len(a)} and {len(b)}.")
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return max(-1.0, min(1.0, dot / (math.sqrt(norm_a) * math.sqrt(norm_b))))


class SimilaritySearchService:
    def __init__(
        self,
        *,
        vector_repo: VectorIndexRepo,
        gateway: OllamaEmbeddingGateway | SentenceTransformerGateway,
        default_model: str = "nomic-embed-text",
        default_threshold: float = 0.0,
    ) -> None:
        self.vector_repo = vector_repo
        self.gateway = gateway
        self.default_model = default_model
        self.default_threshold = default_threshold

    def search(
        self,
        query: str,
        limit: int = 10,
        threshold: float | None = None,
        model: str | None = None,
    ) -> list[SimilaritySearchResult]:
        text = (query or "").strip()
        if not text or limit <= 0:
            return []

        min_score = _clamp_threshold(self.default_threshold if threshold is None else threshold)
        model_name = model or self.default_model

        query_vector = self.gateway.embed(text, model_name)
        # Oldest first; the stable sort below keeps this as the tie-break.
        entries = self.vector_repo.list_for_model(model_name)
        if not entries:
            return []

        expected_dim = self.vector_repo.get_model_dimension(model_name)
        if expected_dim is not None and len(query_vector) != expected_dim:
            raise DimensionMismatchError(
                f"Query vector has length {len(query_vector)} but model {model_name} "
                f"stores {expected_dim}-dimensional vectors."
            )

        scored: list[tuple[float, SimilaritySearchResult]] = []
        for entry in entries:
            score = cosine_similarity(query_vector, entry.embedding_vector)
            if score < min_score:
                continue
            scored.append(
                (
                    score,
                    SimilaritySearchResult(
                        content_id=entry.content_id,
                        content_type=entry.content_type,
                        content=entry.content,
                        similarity_score=score,
                        metadata=entry.metadata,
                    ),
                )
            )

        scored.sort(key=lambda item: -item[0])
        return [result for _, result in scored[:limit]]


def _clamp_threshold(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, float(value)))
