"""
Qdrant connection for the vector memory store.

Returns None when the server cannot be reached so callers can fall back to the
local index (or refuse to start when REQUIRE_QDRANT is set).
"""

from __future__ import annotations

from typing import Any

from qdrant_client import QdrantClient

from backend.app.core.config import Settings, get_settings
from backend.app.observability.logging import log_event


def qdrant_client_kwargs(settings: Settings) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"url": settings.qdrant_url, "timeout": max(1, int(settings.embedding_timeout_seconds))}
    if settings.qdrant_api_key:
        kwargs["api_key"] = settings.qdrant_api_key
    return kwargs


def get_qdrant_client(settings: Settings | None = None) -> QdrantClient | None:
    settings = settings or get_settings()
    try:
        client = QdrantClient(**qdrant_client_kwargs(settings))
        collections = client.get_collections().collections
    except Exception as exc:
        log_event("qdrant_unreachable", url=settings.qdrant_url, error=str(exc))
        return None
    log_event("qdrant_connected", url=settings.qdrant_url, collections=len(collections))
    return client
