"""
Platform-level API endpoints for architecture and runtime inspection.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_services
from backend.app.orchestrator.factory import AppServices


router = APIRouter(prefix="/api/v1/platform", tags=["platform"])


@router.get("/architecture")
async def architecture():
    diagram = """submit-turn (WebSocket)
-> Realtime Session Layer (JWT identity, chat ownership)
-> Memory Orchestrator
   1. ingest   [append user message | embed user text]
   2. index    upsert user vector record
   3. recall   [similarity query | recent history]
   4. assemble long-term unit + short-term history
   5. generate
   6. commit   [append model message | embed reply]
   7. index    upsert model vector record
-> turn-result / turn-error

DELETE /api/chat/{id}
-> messages -> vector records (by chat metadata) -> chat"""
    return {"diagram": diagram}


@router.get("/config")
async def platform_config(services: AppServices = Depends(get_services)):
    settings = services.settings
    return {
        "conversation_backend": settings.conversation_backend,
        "vector_backend": type(services.vector_store).__name__,
        "vector_collection": settings.qdrant_collection,
        "require_qdrant": settings.require_qdrant,
        "embedding_provider": settings.embedding_provider,
        "embedding_model": settings.embedding_model,
        "embedding_dims": settings.embedding_dims,
        "generation_model": settings.groq_model,
        "recall_top_k": settings.recall_top_k,
        "recall_scope": settings.recall_scope,
        "history_limit": settings.history_limit,
        "llm_timeout_seconds": settings.llm_timeout_seconds,
        "embedding_timeout_seconds": settings.embedding_timeout_seconds,
        "serialize_chat_turns": settings.serialize_chat_turns,
    }
