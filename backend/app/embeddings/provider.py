"""
Embedding providers.

Turns a role-tagged text unit into a fixed-length vector. Every provider
validates the vector length against the configured dimensionality so the
vector store never receives a malformed point.
"""

from __future__ import annotations

import math
from typing import Any

from backend.app.conversation.models import TextUnit
from backend.app.core.config import Settings, get_settings
from backend.app.core.errors import EmbeddingFailed
from backend.app.observability.logging import log_event


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


class EmbeddingProvider:
    name = "base"

    def __init__(self, dims: int):
        self.dims = dims

    def _embed_text(self, unit: TextUnit) -> list[float]:
        raise NotImplementedError

    def embed(self, unit: TextUnit) -> list[float]:
        try:
            vector = [float(x) for x in self._embed_text(unit)]
        except EmbeddingFailed:
            raise
        except Exception as exc:
            log_event("embedding_failed", provider=self.name, role=unit.role.value, error=str(exc))
            raise EmbeddingFailed(f"Embedding provider '{self.name}' failed: {exc}") from exc

        if len(vector) != self.dims:
            raise EmbeddingFailed(
                f"Embedding provider '{self.name}' returned {len(vector)} dims, expected {self.dims}"
            )
        return vector


class GeminiEmbeddingProvider(EmbeddingProvider):
    name = "gemini"

    def __init__(self, api_key: str, model: str, dims: int):
        super().__init__(dims)
        self.api_key = api_key
        self.model = model
        self._configured = False

    def _client(self) -> Any:
        import google.generativeai as genai

        if not self._configured:
            if not self.api_key:
                raise EmbeddingFailed("GEMINI_API_KEY not found in environment variables")
            genai.configure(api_key=self.api_key)
            self._configured = True
        return genai

    def _embed_text(self, unit: TextUnit) -> list[float]:
        genai = self._client()
        result = genai.embed_content(
            model=self.model,
            content=unit.text,
            output_dimensionality=self.dims,
        )
        return list(result["embedding"])


class LocalEmbeddingProvider(EmbeddingProvider):
    """sentence-transformers model loaded once on first use."""

    name = "local"

    def __init__(self, model: str, dims: int):
        super().__init__(dims)
        self.model_name = model
        self._model = None

    def _get_model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model_name)
        return self._model

    def _embed_text(self, unit: TextUnit) -> list[float]:
        vector = self._get_model().encode(unit.text, normalize_embeddings=True)
        return vector.tolist()


def get_embedding_provider(settings: Settings | None = None) -> EmbeddingProvider:
    settings = settings or get_settings()
    if settings.embedding_provider == "local":
        return LocalEmbeddingProvider(model=settings.embedding_model, dims=settings.embedding_dims)
    return GeminiEmbeddingProvider(
        api_key=settings.gemini_api_key,
        model=settings.embedding_model,
        dims=settings.embedding_dims,
    )
