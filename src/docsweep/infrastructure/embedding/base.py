from __future__ import annotations

import math
import threading

from docsweep.core.errors import DimensionMismatchError, ProviderUnavailableError


class DimensionTracker:
    """Remembers the vector length each model produced first and rejects changes."""

    def __init__(self) -> None:
        self._dims: dict[str, int] = {}
        self._lock = threading.Lock()

    def check(self, model: str, vector: list[float]) -> list[float]:
        if not vector:
            raise ProviderUnavailableError(f"Embedding service returned an empty vector for model '{model}'.")
        if not all(math.isfinite(x) for x in vector):
            raise ProviderUnavailableError(f"Embedding service returned non-finite values for model '{model}'.")
        with self._lock:
            known = self._dims.setdefault(model, len(vector))
        if known != len(vector):
            raise DimensionMismatchError(
                f"Model '{model}' returned a {len(vector)}-dimensional vector; earlier vectors had {known}."
            )
        return vector

    def dimension(self, model: str) -> int | None:
        with self._lock:
            return self._dims.get(model)

    def forget(self, model: str | None = None) -> None:
        """Drop the remembered length for ``model``, or for every model."""
        with self._lock:
            if model is None:
                self._dims.clear()
            else:
                self._dims.pop(model, None)
