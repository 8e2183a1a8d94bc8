from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass

from docsweep.core.errors import ModelNotFoundError, ProviderUnavailableError
from docsweep.infrastructure.embedding.base import DimensionTracker

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SentenceTransformerConfig:
    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    device: str = "auto"


class SentenceTransformerGateway:
    """In-process embedding gateway serving exactly one configured model."""

    provider_name = "sentence-transformers"

    def __init__(self, config: SentenceTransformerConfig | None = None) -> None:
        self.config = config or SentenceTransformerConfig()
        self._model = None
        self._load_lock = threading.Lock()
        self._dims = DimensionTracker()

    def embed(self, text: str, model: str) -> list[float]:
        if model != self.config.model_name:
            raise ModelNotFoundError(
                f"Model '{model}' is not served here; configured model is '{self.config.model_name}'."
            )
        encoder = self._load_model()
        vectors = encoder.encode(
            [text],
            normalize_embeddings=True,
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        rows = vectors.tolist() if hasattr(vectors, "tolist") else [list(v) for v in vectors]
        return self._dims.check(model, [float(x) for x in rows[0]])

    def forget_dimensions(self, model: str | None = None) -> None:
        self._dims.forget(model)

    def check_connection(self) -> bool:
        try:
            self._load_model()
        except ProviderUnavailableError as exc:
            logger.info("Local embedding model unavailable: %s", exc)
            return False
        return True

    def list_models(self) -> list[str]:
        return [self.config.model_name]

    def _load_model(self):
        with self._load_lock:
            if self._model is not None:
                return self._model
            try:
                import torch
                from sentence_transformers import SentenceTransformer
            except ImportError as exc:  # pragma: no cover - dependency guard
                raise ProviderUnavailableError(
                    "Local embedding dependencies are missing. Install with "
                    "`pip install -e '.[local-embeddings]'`."
                ) from exc

            # Keep CPU thread counts bounded when running on large machines.
            if "OMP_NUM_THREADS" not in os.environ:
                os.environ["OMP_NUM_THREADS"] = "8"

            device = self._resolve_device(torch)
            try:
                self._model = SentenceTransformer(self.config.model_name, device=device)
            except OSError as exc:
                raise ProviderUnavailableError(
                    f"Unable to load embedding model '{self.config.model_name}': {exc}"
                ) from exc
            return self._model

    def _resolve_device(self, torch_module) -> str:
        configured = (self.config.device or "auto").strip().lower()
        if configured and configured != "auto":
            return configured

        if bool(getattr(torch_module.backends, "mps", None)) and torch_module.backends.mps.is_available():
            return "mps"
        if torch_module.cuda.is_available():
            return "cuda"
        return "cpu"
