from __future__ import annotations

from docsweep.core.config import Settings
from docsweep.infrastructure.embedding.ollama_gateway import OllamaEmbeddingGateway
from docsweep.infrastructure.embedding.sentence_transformer_gateway import (
    SentenceTransformerConfig,
    SentenceTransformerGateway,
)


def build_gateway(settings: Settings) -> OllamaEmbeddingGateway | SentenceTransformerGateway:
    if settings.embed_provider == "sentence-transformers":
        return SentenceTransformerGateway(SentenceTransformerConfig(model_name=settings.embed_model))
    return OllamaEmbeddingGateway(
        host=settings.ollama_host,
        timeout_seconds=settings.embed_timeout_seconds,
    )
