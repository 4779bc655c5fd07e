"""
Wiring for the orchestrator and its collaborators.

Providers and stores are constructed here and injected, so tests (and
alternative deployments) can hand the orchestrator their own doubles.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from backend.app.conversation.store import ConversationStore, MongoConversationStore, SqlConversationStore
from backend.app.core.config import Settings, get_settings
from backend.app.core.db.relational import get_engine, get_session_factory, init_relational_db
from backend.app.core.llm.groq_client import get_generative_provider
from backend.app.embeddings.provider import get_embedding_provider
from backend.app.observability.logging import log_event
from backend.app.orchestrator.memory_orchestrator import MemoryOrchestrator
from backend.app.orchestrator.types import Embedder, Generator, PartialWriteHook
from backend.app.vector_store.repository import VectorStoreRepository, get_vector_store


@dataclass
class AppServices:
    settings: Settings
    session_factory: sessionmaker
    conversation_store: ConversationStore
    vector_store: VectorStoreRepository
    orchestrator: MemoryOrchestrator


def build_memory_orchestrator(
    settings: Settings,
    conversation_store: ConversationStore,
    vector_store: VectorStoreRepository,
    embedder: Embedder,
    generator: Generator,
    partial_write_hook: Optional[PartialWriteHook] = None,
) -> MemoryOrchestrator:
    return MemoryOrchestrator(
        conversation_store=conversation_store,
        vector_store=vector_store,
        embedder=embedder,
        generator=generator,
        recall_top_k=settings.recall_top_k,
        history_limit=settings.history_limit,
        recall_scope=settings.recall_scope,
        llm_timeout_seconds=settings.llm_timeout_seconds,
        embedding_timeout_seconds=settings.embedding_timeout_seconds,
        serialize_chat_turns=settings.serialize_chat_turns,
        partial_write_hook=partial_write_hook,
    )


def build_conversation_store(settings: Settings, session_factory: sessionmaker) -> ConversationStore:
    if settings.conversation_backend == "mongo":
        from backend.app.core.db.mongo import open_conversation_db

        return MongoConversationStore(open_conversation_db(settings))
    return SqlConversationStore(session_factory)


def build_services(settings: Settings | None = None) -> AppServices:
    settings = settings or get_settings()
    init_relational_db(get_engine())
    session_factory = get_session_factory()
    conversation_store = build_conversation_store(settings, session_factory)
    vector_store = get_vector_store(settings)
    orchestrator = build_memory_orchestrator(
        settings,
        conversation_store=conversation_store,
        vector_store=vector_store,
        embedder=get_embedding_provider(settings),
        generator=get_generative_provider(settings),
    )
    log_event(
        "services_ready",
        conversation_backend=settings.conversation_backend,
        vector_backend=type(vector_store).__name__,
        embedding_provider=settings.embedding_provider,
        recall_scope=settings.recall_scope,
    )
    return AppServices(
        settings=settings,
        session_factory=session_factory,
        conversation_store=conversation_store,
        vector_store=vector_store,
        orchestrator=orchestrator,
    )
