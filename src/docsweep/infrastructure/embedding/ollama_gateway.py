from __future__ import annotations

import logging

import httpx

from docsweep.core.errors import ModelNotFoundError, ProviderUnavailableError
from docsweep.infrastructure.embedding.base import DimensionTracker

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_HOST = "http://localhost:11434"


class OllamaEmbeddingGateway:
    """Embedding gateway backed by an Ollama server.

    Uses ``POST /api/embed`` for vectors and ``GET /api/tags`` for the model
    list and connection checks.
    """

    provider_name = "ollama"

    def __init__(
        self,
        *,
        host: str | None = None,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.host = (host or DEFAULT_OLLAMA_HOST).rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = httpx.Client(base_url=self.host, timeout=timeout_seconds, transport=transport)
        self._dims = DimensionTracker()

    def close(self) -> None:
        self._client.close()

    def embed(self, text: str, model: str) -> list[float]:
        try:
            response = self._client.post("/api/embed", json={"model": model, "input": text})
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                f"Embedding request to {self.host} timed out after {self.timeout_seconds:g}s"
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(f"Cannot reach embedding service at {self.host}: {exc}") from exc

        if response.status_code == 404 or _mentions_missing_model(response):
            raise ModelNotFoundError(f"Embedding model not found on {self.host}: {model}")
        if response.is_error:
            raise ProviderUnavailableError(
                f"Embedding service at {self.host} answered {response.status_code}: {_error_text(response)}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError(f"Embedding service returned invalid JSON: {exc}") from exc
        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not embeddings or not isinstance(embeddings, list) or not isinstance(embeddings[0], list):
            raise ProviderUnavailableError(f"Unexpected embedding response format: {str(data)[:200]}")
        vector = [float(x) for x in embeddings[0]]
        logger.debug("Embedded %d chars with %s (%d dims)", len(text), model, len(vector))
        return self._dims.check(model, vector)

    def forget_dimensions(self, model: str | None = None) -> None:
        self._dims.forget(model)

    def check_connection(self) -> bool:
        try:
            response = self._client.get("/api/tags")
        except httpx.HTTPError as exc:
            logger.info("Embedding service at %s is unreachable: %s", self.host, exc)
            return False
        return response.is_success

    def list_models(self) -> list[str]:
        try:
            response = self._client.get("/api/tags")
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(f"Model listing at {self.host} timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(f"Cannot list models at {self.host}: {exc}") from exc
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError(f"Model listing returned invalid JSON: {exc}") from exc
        names = {
            str(item.get("name") or "").strip()
            for item in ((data.get("models") if isinstance(data, dict) else None) or [])
            if isinstance(item, dict)
        }
        return sorted(name for name in names if name)


def _error_text(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return str(payload)[:200]


def _mentions_missing_model(response: httpx.Response) -> bool:
    if response.status_code not in {400, 500}:
        return False
    message = _error_text(response).lower()
    return "model" in message and "not found" in message
