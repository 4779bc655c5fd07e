"""
Memory orchestrator.

Coordinates the conversation store, the vector memory store and the two model
providers to run one chat turn and to delete a chat with everything derived
from it.

Turn protocol (brackets run their members concurrently and join before the
next stage starts):

    1. ingest   [append user message | embed user text]
    2. index    upsert user vector record (id == message id)
    3. recall   [similarity query | recent history, reversed to oldest-first]
    4. assemble long-term unit + short-term units
    5. generate
    6. commit   [append model message | embed reply]
    7. index    upsert model vector record
    8. return reply

Writes are not transactional across the two stores. A stage that fails after an
earlier write landed leaves the stores out of step; that is logged as a
partial write and handed to the optional partial-write hook, never rolled back.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional

from backend.app.conversation.models import Message, Role, TextUnit
from backend.app.conversation.store import ConversationStore
from backend.app.core.errors import (
    ChatMemoryError,
    EmbeddingFailed,
    Forbidden,
    GenerationFailed,
    InvalidInput,
    NotFound,
    StoreUnavailable,
)
from backend.app.observability.logging import log_event
from backend.app.orchestrator.prompt_assembler import PromptAssembler
from backend.app.orchestrator.types import (
    DeleteResult,
    Embedder,
    Generator,
    PartialWrite,
    PartialWriteHook,
    TurnResult,
)
from backend.app.vector_store.repository import VectorStoreRepository


class MemoryOrchestrator:
    def __init__(
        self,
        conversation_store: ConversationStore,
        vector_store: VectorStoreRepository,
        embedder: Embedder,
        generator: Generator,
        *,
        recall_top_k: int = 3,
        history_limit: int = 10,
        recall_scope: str = "user",
        llm_timeout_seconds: Optional[float] = None,
        embedding_timeout_seconds: Optional[float] = None,
        serialize_chat_turns: bool = False,
        partial_write_hook: Optional[PartialWriteHook] = None,
        assembler: Optional[PromptAssembler] = None,
    ):
        self.conversation_store = conversation_store
        self.vector_store = vector_store
        self.embedder = embedder
        self.generator = generator
        self.recall_top_k = recall_top_k
        self.history_limit = history_limit
        self.recall_scope = recall_scope
        self.llm_timeout_seconds = llm_timeout_seconds
        self.embedding_timeout_seconds = embedding_timeout_seconds
        self.serialize_chat_turns = serialize_chat_turns
        self.partial_write_hook = partial_write_hook
        self.assembler = assembler or PromptAssembler()
        self._chat_locks: dict[str, list[Any]] = {}

    # ------------------------------------------------------------------
    # Collaborator calls. Each runs in a worker thread and is translated
    # into the error taxonomy.
    # ------------------------------------------------------------------

    async def _store_call(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except ChatMemoryError:
            raise
        except Exception as exc:
            raise StoreUnavailable(f"{getattr(fn, '__name__', 'store call')} failed: {exc}") from exc

    async def _embed(self, unit: TextUnit) -> list[float]:
        try:
            return await self._with_timeout(asyncio.to_thread(self.embedder.embed, unit), self.embedding_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise EmbeddingFailed(f"Embedding timed out after {self.embedding_timeout_seconds}s") from exc
        except ChatMemoryError:
            raise
        except Exception as exc:
            raise EmbeddingFailed(str(exc)) from exc

    async def _generate(self, units: list[TextUnit]) -> str:
        try:
            reply = await self._with_timeout(asyncio.to_thread(self.generator.generate, units), self.llm_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise GenerationFailed(f"Generation timed out after {self.llm_timeout_seconds}s") from exc
        except ChatMemoryError:
            raise
        except Exception as exc:
            raise GenerationFailed(str(exc)) from exc
        if not isinstance(reply, str) or not reply.strip():
            raise GenerationFailed("Generative provider returned an empty reply")
        return reply

    @staticmethod
    async def _with_timeout(awaitable: Awaitable[Any], timeout: Optional[float]) -> Any:
        if timeout:
            return await asyncio.wait_for(awaitable, timeout)
        return await awaitable

    # ------------------------------------------------------------------
    # Failure reporting
    # ------------------------------------------------------------------

    def _stage_failed(self, stage: str, chat_id: str, user_id: str, exc: ChatMemoryError):
        exc.stage = exc.stage or stage
        log_event(
            "turn_stage_failed",
            level=logging.WARNING,
            stage=stage,
            chat_id=chat_id,
            user_id=user_id,
            error_class=exc.code,
            error=str(exc),
        )

    def _partial_write(
        self,
        stage: str,
        chat_id: str,
        user_id: str,
        exc: Exception,
        message_id: Optional[str] = None,
        **details: Any,
    ):
        record = PartialWrite(
            stage=stage,
            chat_id=chat_id,
            user_id=user_id,
            error=str(exc),
            message_id=message_id,
            details=details,
        )
        log_event(
            "turn_partial_write",
            level=logging.WARNING,
            stage=stage,
            chat_id=chat_id,
            user_id=user_id,
            message_id=message_id,
            error=str(exc),
            **details,
        )
        if self.partial_write_hook is None:
            return
        try:
            self.partial_write_hook(record)
        except Exception as hook_exc:
            log_event("partial_write_hook_failed", level=logging.ERROR, stage=stage, error=str(hook_exc))

    # ------------------------------------------------------------------
    # Turn protocol
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _chat_turn_lock(self, chat_id: str):
        entry = self._chat_locks.setdefault(chat_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._chat_locks.pop(chat_id, None)

    async def process_turn(self, chat_id: str, user_id: str, text: str) -> TurnResult:
        chat_id = str(chat_id or "").strip()
        content = (text or "").strip() if isinstance(text, str) else ""
        if not chat_id:
            raise InvalidInput("chat is required")
        if not content:
            raise InvalidInput("message must not be empty")

        if self.serialize_chat_turns:
            async with self._chat_turn_lock(chat_id):
                return await self._run_turn(chat_id, str(user_id), content)
        return await self._run_turn(chat_id, str(user_id), content)

    async def _ingest(self, chat_id: str, user_id: str, role: Role, content: str, stage: str) -> tuple[Message, list[float]]:
        append_task = asyncio.ensure_future(
            self._store_call(self.conversation_store.append_message, chat_id, user_id, role, content)
        )
        embed_task = asyncio.ensure_future(self._embed(TextUnit(role=role, text=content)))
        try:
            message, vector = await asyncio.gather(append_task, embed_task)
        except ChatMemoryError as exc:
            self._stage_failed(stage, chat_id, user_id, exc)
            if embed_task.done() and not embed_task.cancelled() and embed_task.exception() is exc:
                if append_task.done() and append_task.exception() is None:
                    self._partial_write(stage, chat_id, user_id, exc, message_id=append_task.result().id)
                elif not append_task.done():
                    self._partial_write(stage, chat_id, user_id, exc, append_in_flight=True)
            raise
        return message, vector

    async def _index(self, stage: str, message: Message, vector: list[float]):
        metadata = {
            "chat": message.chat_id,
            "user": message.author_id,
            "text": message.content,
            "role": message.role.value,
        }
        try:
            await self._store_call(self.vector_store.upsert, message.id, vector, metadata)
        except ChatMemoryError as exc:
            self._stage_failed(stage, message.chat_id, message.author_id, exc)
            self._partial_write(stage, message.chat_id, message.author_id, exc, message_id=message.id)
            raise

    def _recall_filter(self, user_id: str) -> Optional[dict[str, Any]]:
        if self.recall_scope == "user":
            return {"user": user_id}
        return None

    async def _run_turn(self, chat_id: str, user_id: str, content: str) -> TurnResult:
        started = time.perf_counter()

        user_message, user_vector = await self._ingest(chat_id, user_id, Role.USER, content, "ingest")
        await self._index("index_user", user_message, user_vector)

        try:
            recalled, recent = await asyncio.gather(
                self._store_call(
                    self.vector_store.query,
                    user_vector,
                    self.recall_top_k,
                    self._recall_filter(user_id),
                ),
                self._store_call(self.conversation_store.recent_messages, chat_id, self.history_limit),
            )
        except ChatMemoryError as exc:
            self._stage_failed("recall", chat_id, user_id, exc)
            raise
        history = list(reversed(recent))

        context = self.assembler.build(recalled, history)

        try:
            reply = await self._generate(context.provider_input)
        except ChatMemoryError as exc:
            self._stage_failed("generate", chat_id, user_id, exc)
            raise

        model_message, model_vector = await self._ingest(chat_id, user_id, Role.MODEL, reply, "commit")
        await self._index("index_model", model_message, model_vector)

        log_event(
            "turn_completed",
            chat_id=chat_id,
            user_id=user_id,
            user_message_id=user_message.id,
            model_message_id=model_message.id,
            recalled=len(recalled),
            history=len(history),
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return TurnResult(
            content=reply,
            chat_id=chat_id,
            user_message_id=user_message.id,
            model_message_id=model_message.id,
        )

    # ------------------------------------------------------------------
    # Cascading delete
    # ------------------------------------------------------------------

    async def delete_chat(self, chat_id: str, user_id: str) -> DeleteResult:
        """
        Delete a chat, its messages and its vector records, in that order of
        dependents first and the chat itself last. A failure stops the cascade
        and leaves the chat listed; completed steps are not undone.
        """
        chat = await self._store_call(self.conversation_store.get_chat, chat_id)
        if chat is None:
            raise NotFound("Chat not found")
        if str(chat.owner_id) != str(user_id):
            raise Forbidden("Unauthorized")

        stage = "delete_messages"
        try:
            messages_deleted = await self._store_call(self.conversation_store.delete_messages, chat_id)
            stage = "delete_vectors"
            vectors_deleted = await self._store_call(self.vector_store.delete_by_metadata, {"chat": chat_id})
            stage = "delete_chat"
            await self._store_call(self.conversation_store.delete_chat, chat_id)
        except ChatMemoryError as exc:
            exc.stage = exc.stage or stage
            log_event(
                "chat_delete_failed",
                level=logging.ERROR,
                stage=stage,
                chat_id=chat_id,
                user_id=user_id,
                error_class=exc.code,
                error=str(exc),
            )
            raise

        log_event(
            "chat_deleted",
            chat_id=chat_id,
            user_id=user_id,
            messages_deleted=messages_deleted,
            vectors_deleted=vectors_deleted,
        )
        return DeleteResult(chat_id=chat_id, messages_deleted=messages_deleted, vectors_deleted=vectors_deleted)
